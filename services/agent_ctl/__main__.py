from __future__ import annotations

import sys

from services.agent_ctl.ctl import main

if __name__ == "__main__":
    sys.exit(main())
