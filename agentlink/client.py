from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from agentlink.models import (
    ActiveTextEditor,
    ActiveTextEditorSelection,
    ActiveTextEditorVisibleContent,
    ReplaceSelectionParams,
    ReplaceSelectionResult,
)

logger = logging.getLogger(__name__)


class AgentClient:
    """Host-side answers to the calls the agent makes back into the host.

    The defaults describe a host without an editor: nothing is open, nothing is
    selected and no context is required. Editor integrations subclass this and
    override the ``editor_*`` and ``intent_*`` methods.
    """

    def __init__(
        self,
        *,
        on_warning: Callable[[str], None] | None = None,
        on_message_in_progress: Callable[[Any], None] | None = None,
        on_transcript: Callable[[Any], None] | None = None,
    ):
        self.on_warning = on_warning
        self.on_message_in_progress = on_message_in_progress
        self.on_transcript = on_transcript
        self.warnings: list[str] = []
        self.message_in_progress: Any = None
        self.transcript: Any = None

    async def editor_quick_pick(self, labels: list[str]) -> str | None:
        return None

    async def editor_prompt(self, prompt: str) -> str | None:
        return None

    async def editor_active(self) -> ActiveTextEditor | None:
        return None

    async def editor_selection(self) -> ActiveTextEditorSelection | None:
        return None

    async def editor_selection_or_entire_file(self) -> ActiveTextEditorSelection | None:
        return await self.editor_selection()

    async def editor_visible_content(self) -> ActiveTextEditorVisibleContent | None:
        return None

    async def intent_is_codebase_context_required(self, text: str) -> bool:
        return False

    async def intent_is_editor_context_required(self, text: str) -> bool:
        return False

    async def editor_replace_selection(self, params: ReplaceSelectionParams) -> ReplaceSelectionResult:
        return ReplaceSelectionResult(applied=False, failure_reason=f"no editor to edit {params.file_name}")

    # notifications run on the handler pool

    def editor_warning(self, message: str) -> None:
        logger.warning("agent warning: %s", message)
        self.warnings.append(message)
        if self.on_warning:
            self.on_warning(message)

    def chat_update_message_in_progress(self, message: Any) -> None:
        self.message_in_progress = message
        if self.on_message_in_progress:
            self.on_message_in_progress(message)

    def chat_update_transcript(self, transcript: Any) -> None:
        self.transcript = transcript
        if self.on_transcript:
            self.on_transcript(transcript)
