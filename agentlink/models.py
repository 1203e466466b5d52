from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Payload shapes travel camelCased; Python code uses snake_case names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ClientInfo(WireModel):
    name: str


class ServerInfo(WireModel):
    name: str


class RecipeInfo(WireModel):
    id: str
    title: str


class StaticEditor(WireModel):
    workspace_root: Optional[str] = None


class StaticRecipeContext(WireModel):
    editor: StaticEditor
    first_interaction: bool = False


class ExecuteRecipeParams(WireModel):
    id: str
    human_chat_input: str
    context: StaticRecipeContext


class ReplaceSelectionParams(WireModel):
    file_name: str
    selected_text: str
    replacement: str


class ReplaceSelectionResult(WireModel):
    applied: bool
    failure_reason: str = ""


class ActiveTextEditor(WireModel):
    content: str
    file_path: str
    repo_name: Optional[str] = None
    revision: Optional[str] = None


class ActiveTextEditorSelection(WireModel):
    file_name: str
    repo_name: Optional[str] = None
    revision: Optional[str] = None
    preceding_text: str = ""
    selected_text: str = ""
    following_text: str = ""


class ActiveTextEditorVisibleContent(WireModel):
    content: str
    file_name: str
    repo_name: Optional[str] = None
    revision: Optional[str] = None
