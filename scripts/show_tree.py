#!/usr/bin/env python3
"""
Display the referral tree.

Shows the member hierarchy with tier, status and team metrics.

Usage:
    python scripts/show_tree.py [--root-id MEMBER_ID] [--max-depth DEPTH] [--stats]
"""

import sys
import os
import argparse

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import func

from config import Config
from core.db import get_session
from models.member import Member
from mlm_core.services.tree_service import TreeService

import logging

logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)


def print_tree(root_member, max_depth=None):
    """Print ASCII tree of the structure."""
    session = get_session()
    try:
        tree = TreeService(session)

        def print_member(member, prefix="", is_last=True, depth=0):
            if max_depth and depth > max_depth:
                return

            connector = "└─ " if is_last else "├─ "
            active_marker = "✅" if member.isActive else "❌"
            name = member.nickname or member.memberNumber or "-"
            points_display = f"{member.pointsBalance} pts" if member.pointsBalance > 0 else ""

            print(
                f"{prefix}{connector}{name} (ID:{member.memberID}) {active_marker} "
                f"[T{member.tier}] direct={member.directSales} team={member.teamSales} "
                f"({member.teamCount}) {points_display}"
            )

            children = tree.getChildren(member.memberID)
            for i, child in enumerate(children):
                is_last_child = (i == len(children) - 1)
                new_prefix = prefix + ("    " if is_last else "│   ")
                print_member(child, new_prefix, is_last_child, depth + 1)

        print("\n" + "=" * 80)
        print("REFERRAL TREE")
        print("=" * 80)
        print("\nLegend:")
        print("  ✅ = Active member")
        print("  ❌ = Inactive member")
        print("  [Tn] = Tier id")
        print("  direct / team = Direct and team sales, (n) = team buyers")
        print("\n" + "=" * 80 + "\n")
        print_member(session.get(Member, root_member.memberID))
        print("\n" + "=" * 80 + "\n")

    finally:
        session.close()


def print_statistics():
    """Print database statistics."""
    session = get_session()
    try:
        total_members = session.query(Member).count()
        if not total_members:
            print("No members yet.")
            return

        active_members = session.query(Member).filter_by(status="active").count()
        max_depth = session.query(func.max(Member.depth)).scalar()

        print("\n" + "=" * 80)
        print("DATABASE STATISTICS")
        print("=" * 80 + "\n")

        print(f"Total members:    {total_members}")
        print(f"Active members:   {active_members} ({active_members/total_members*100:.1f}%)")
        print(f"Inactive members: {total_members - active_members}")
        print(f"Deepest level:    {max_depth}")

        print("\nMembers by tier:")
        tier_counts = session.query(
            Member.tier,
            func.count(Member.memberID)
        ).group_by(Member.tier).order_by(Member.tier).all()

        for tier, count in tier_counts:
            print(f"  T{tier:<4} {count:5} ({count/total_members*100:.1f}%)")

        total_points = session.query(func.coalesce(func.sum(Member.pointsBalance), 0)).scalar()
        print(f"\nPoints outstanding: {total_points}")

        print("\n" + "=" * 80 + "\n")

    finally:
        session.close()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description='Display referral tree')
    parser.add_argument('--root-id', type=int,
                        help='Member ID to start from (default: first root member)')
    parser.add_argument('--max-depth', type=int,
                        help='Maximum depth to display')
    parser.add_argument('--stats', action='store_true',
                        help='Show statistics only')
    args = parser.parse_args()

    # Initialize config
    Config.initialize_from_env()

    if args.stats:
        print_statistics()
        return

    session = get_session()
    try:
        if args.root_id:
            root = session.get(Member, args.root_id)
            if not root:
                print(f"❌ Member {args.root_id} not found!")
                return
        else:
            root = session.query(Member).filter(
                Member.parentID.is_(None)
            ).order_by(Member.memberID).first()
            if not root:
                print("❌ No root member found!")
                return

        print_tree(root, args.max_depth)
        print_statistics()

    finally:
        session.close()


if __name__ == "__main__":
    main()
