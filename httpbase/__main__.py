from __future__ import annotations

import asyncio
import sys

from httpbase.errors import HttpBaseError
from httpbase.server import run


def main() -> None:
    try:
        asyncio.run(run(sys.argv))
    except KeyboardInterrupt:
        # Interrupted before the shutdown handlers were installed.
        return
    except HttpBaseError as exc:
        print(exc, file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
