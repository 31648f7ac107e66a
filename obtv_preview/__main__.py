"""Allow ``python -m obtv_preview`` to run the preview CLI."""

from __future__ import annotations

import sys

from obtv_preview import run


if __name__ == "__main__":
    try:
        sys.exit(run())
    except KeyboardInterrupt:
        sys.exit(130)
