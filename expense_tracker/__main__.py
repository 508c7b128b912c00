from __future__ import annotations

import sys

from expense_tracker.cli import main

if __name__ == "__main__":  # pragma: no cover - module entrypoint
    sys.exit(main())
