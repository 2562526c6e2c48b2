"""Allow ``python -m inspection_capture``."""

from __future__ import annotations

import sys


def main() -> None:
    from inspection_capture import run

    sys.exit(run(sys.argv[1:]))


if __name__ == "__main__":
    main()
