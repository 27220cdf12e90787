"""Provisioning CLI launcher for runs from inside `src/`.

Same commands as the `ibp-provision` console script (`wait`, `provision`,
`components`, `doctor`).
"""

from __future__ import annotations

import sys

# Rich output on Windows terminals (cp1252 vs utf-8).
if sys.platform == "win32":
    sys.stdout.reconfigure(encoding="utf-8")
    sys.stderr.reconfigure(encoding="utf-8")

from cli.main import run


def main() -> None:
    run()


if __name__ == "__main__":
    main()
