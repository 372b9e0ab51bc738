"""Run broadcast QC analysis straight from a source checkout, without the console script."""
from __future__ import annotations

from broadcast_qc.cli.app import run_cli


def main() -> int:
    return run_cli()


if __name__ == "__main__":
    raise SystemExit(main())
