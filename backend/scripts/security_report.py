"""CLI script to print login statistics and prune old login attempts.
Usage: python scripts/security_report.py [--days N] [--prune-older-than DAYS]
"""
import sys
import argparse
import json
import pathlib
from typing import Optional
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from studytogether.database import engine, create_db_and_tables
from studytogether import services


def main(days: int = 7, prune_older_than: Optional[int] = None):
    create_db_and_tables()
    with Session(engine) as session:
        svc = services.SecurityService(session)
        if prune_older_than is not None:
            removed = svc.cleanup_attempts(days_to_keep=prune_older_than)
            print(f'Removed {removed} login attempts older than {prune_older_than} days')
        print(json.dumps(svc.login_stats(days=days), indent=2))


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('--days', type=int, default=7, help='Reporting window in days')
    parser.add_argument('--prune-older-than', type=int, help='Delete attempts older than this many days')
    args = parser.parse_args()
    main(days=args.days, prune_older_than=args.prune_older_than)
