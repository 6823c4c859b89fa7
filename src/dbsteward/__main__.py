"""Entry point for ``python -m dbsteward``."""

from __future__ import annotations

import sys


def main() -> None:
    from dbsteward.cli import dispatch

    sys.exit(dispatch(sys.argv[1:]))


if __name__ == "__main__":
    main()
