"""Run `ibp-provision` from a checkout without installing it.

`python -m main wait https://ca.example.test:7054` puts `src/` on the path and
hands the arguments to the same Typer app the console script uses.
"""

from __future__ import annotations

import sys
from pathlib import Path


def main() -> None:
    project_root = Path(__file__).resolve().parent
    src = project_root / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))

    from cli.main import run  # noqa: PLC0415

    run()


if __name__ == "__main__":
    main()
