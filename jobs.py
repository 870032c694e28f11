from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from grind_ledger.main import run_jobs


def main() -> None:
    if len(sys.argv) < 2:
        raise SystemExit("Usage: python jobs.py <backup|export_csv> [...]")
    run_jobs(sys.argv[1:])


if __name__ == "__main__":
    main()
