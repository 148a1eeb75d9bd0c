"""
joydrop.__main__ — Entry point for ``python -m joydrop``
=========================================================

Commands:

* ``serve`` — load ``.env`` and ``config.yaml``, make sure the tables
  exist, then run the API under uvicorn.
* ``reconcile [--dry-run]`` — recompute every Tier 1 / Tier 2 counter
  from raw rows, fix drift (unless ``--dry-run``) and print the report
  as JSON.

Run with::

    python -m joydrop serve
    python -m joydrop reconcile --dry-run
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from dotenv import load_dotenv

from joydrop.config import load_config
from joydrop.database.engine import create_db_engine, init_db
from joydrop.services.reconciliation_service import reconcile_counts

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("joydrop")


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    cfg = load_config()
    logger.info("Config loaded — %s on port %d", cfg.app_name, cfg.api_port)

    init_db(create_db_engine())

    uvicorn.run("joydrop.api.main:app", host=args.host, port=cfg.api_port)
    return 0


def _reconcile(args: argparse.Namespace) -> int:
    engine = create_db_engine()
    report = reconcile_counts(engine, fix=not args.dry_run)
    print(json.dumps(report, indent=2))
    return 1 if report["corrections"] and args.dry_run else 0


def main(argv: list[str] | None = None) -> int:
    """Parse the command line and dispatch."""
    load_dotenv()

    parser = argparse.ArgumentParser(prog="joydrop", description="Joydrop service")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="0.0.0.0")
    serve.set_defaults(func=_serve)

    reconcile = sub.add_parser("reconcile", help="Check and fix Tier 1 / Tier 2 counts")
    reconcile.add_argument(
        "--dry-run", action="store_true", help="Report drift without correcting it",
    )
    reconcile.set_defaults(func=_reconcile)

    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
