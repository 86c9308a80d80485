#!/usr/bin/env python
"""
Expire active leases whose end date has passed and free their units.

Meant to run daily from cron or a scheduler. Safe to re-run and to run
concurrently with itself or with the API.

Usage:
     python scripts/expire_leases.py
     python scripts/expire_leases.py --as-of 2026-10-01
"""
import argparse
import logging
import os
import sys
from datetime import date

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import get_session_context
from logging_config import setup_logging
from services.lease_service import LeaseService

logger = logging.getLogger("expire_leases")


def parse_args(argv=None) -> argparse.Namespace:
     parser = argparse.ArgumentParser(description="Expire leases past their end date.")
     parser.add_argument(
          "--as-of",
          type=date.fromisoformat,
          default=None,
          help="Reference date YYYY-MM-DD (default: today). Leases ending before it expire.",
     )
     return parser.parse_args(argv)


def main(argv=None) -> int:
     args = parse_args(argv)
     setup_logging()
     try:
          with get_session_context() as db:
               expired = LeaseService.expire_leases(db, as_of=args.as_of)
     except Exception:
          logger.exception("Lease expiry sweep failed")
          return 1

     logger.info("Expired %d lease(s)", len(expired))
     print(f"Expired {len(expired)} lease(s)")
     return 0


if __name__ == "__main__":
     sys.exit(main())
