#!/usr/bin/env python3
"""
Audit balances, aggregates and tree paths.

Exits with status 1 when any member has issues.

Usage:
    python scripts/reconcile.py                 # all members
    python scripts/reconcile.py --member-id 12  # one member
"""

import sys
import os
import argparse

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Config
from core.db import get_session
from mlm_core.services.reconciliation_service import ReconciliationService

import logging

logging.basicConfig(level=logging.WARNING)


def main():
    """Run reconciliation and print a report."""
    parser = argparse.ArgumentParser(description='Reconcile points and team metrics')
    parser.add_argument('--member-id', type=int, action='append',
                        help='Member ID to check (repeatable, default: all)')
    args = parser.parse_args()

    Config.initialize_from_env()
    Config.validate_critical_keys()

    session = get_session()
    try:
        results = ReconciliationService(session).checkAll(args.member_id)

        print("\n" + "=" * 80)
        print("RECONCILIATION REPORT")
        print("=" * 80 + "\n")
        print(f"Checked:     {results['checked']}")
        print(f"With issues: {results['withIssues']}")

        for memberId, issues in results["issues"].items():
            print(f"\nMember {memberId}:")
            for issue in issues:
                print(f"  ❌ {issue}")

        print("\n" + "=" * 80 + "\n")

        return 1 if results["withIssues"] else 0

    finally:
        session.close()


if __name__ == "__main__":
    sys.exit(main())
