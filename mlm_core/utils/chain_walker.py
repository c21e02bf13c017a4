# mlm_core/utils/chain_walker.py
"""
Safe referral chain walking utilities.
Walks parent pointers (not the stored treePath) so the stored path can be
validated against the real linkage. Prevents infinite loops on corrupt data.
"""
from typing import Callable, List, Optional, Set
from sqlalchemy.orm import Session
import logging

from models.member import Member
from config import Config

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 100


class ChainWalker:
    """
    Safe utilities for walking upline chains.
    Prevents infinite loops and validates stored paths.
    """

    def __init__(self, session: Session, max_depth: Optional[int] = None):
        self.session = session
        self.max_depth = max_depth or int(Config.get(Config.MAX_CHAIN_DEPTH, DEFAULT_MAX_DEPTH))

    def walk_upline(
            self,
            start_member: Member,
            callback: Callable[[Member, int], bool],
            max_depth: Optional[int] = None
    ) -> int:
        """
        Safely walk up the parent chain, calling callback for each ancestor.

        Args:
            start_member: Starting member (not passed to callback)
            callback: Function(member, level) -> continue_walking (bool);
                level 1 is the immediate parent
            max_depth: Maximum depth to prevent runaway loops

        Returns:
            Number of ancestors processed
        """
        limit = max_depth or self.max_depth
        current = start_member
        level = 1
        processed = 0
        visited = {start_member.memberID}

        while current.parentID is not None and level <= limit:
            if current.parentID in visited:
                logger.error(f"Cycle detected at member {current.parentID}")
                break

            parent = self.session.get(Member, current.parentID)
            if parent is None:
                logger.warning(
                    f"Parent not found: memberID={current.parentID} "
                    f"for member {current.memberID}"
                )
                break

            visited.add(parent.memberID)

            should_continue = callback(parent, level)
            processed += 1

            if not should_continue:
                break

            current = parent
            level += 1

        if level > limit:
            logger.error(f"Max depth ({limit}) exceeded starting from member {start_member.memberID}")

        return processed

    def get_upline_chain(self, member: Member, max_depth: Optional[int] = None) -> List[Member]:
        """
        Get list of all members in upline chain.

        Returns:
            List of members from immediate parent to root
        """
        chain = []

        def collect(upline_member, level):
            chain.append(upline_member)
            return True

        self.walk_upline(member, collect, max_depth)
        return chain

    def validate_path(self, member: Member) -> bool:
        """
        Validate that the stored treePath/depth match the parent linkage.

        Checks for cycles, missing parents, paths containing the member
        itself and depth = len(teamPath) + 1.

        Returns:
            True if path is valid, False otherwise
        """
        stored = member.teamPath

        if member.memberID in stored:
            logger.error(f"Member {member.memberID} appears in its own path {member.treePath}")
            return False

        if len(set(stored)) != len(stored):
            logger.error(f"Member {member.memberID} path repeats an ancestor: {member.treePath}")
            return False

        if member.depth != len(stored) + 1:
            logger.error(
                f"Member {member.memberID} depth={member.depth} "
                f"but path has {len(stored)} ancestors"
            )
            return False

        visited: Set[int] = {member.memberID}
        walked: List[int] = []
        current = member

        while current.parentID is not None:
            if current.parentID in visited:
                logger.error(f"Cycle detected in chain for member {member.memberID}")
                return False

            # Walk is bounded by the stored path, not max_depth
            if len(walked) >= len(stored):
                logger.error(
                    f"Parent chain of member {member.memberID} is longer "
                    f"than its stored path {stored}"
                )
                return False

            parent = self.session.get(Member, current.parentID)
            if parent is None:
                logger.error(
                    f"Broken chain: parent memberID={current.parentID} "
                    f"not found for member {current.memberID}"
                )
                return False

            visited.add(parent.memberID)
            walked.append(parent.memberID)
            current = parent

        walked.reverse()
        if walked != stored:
            logger.error(
                f"Member {member.memberID} stored path {stored} "
                f"does not match parent chain {walked}"
            )
            return False

        return True

    def find_broken_paths(self) -> Set[int]:
        """
        Find all members whose stored path disagrees with the parent chain.

        Returns:
            Set of member IDs with broken paths
        """
        broken = set()

        for member in self.session.query(Member).order_by(Member.depth, Member.memberID):
            if not self.validate_path(member):
                broken.add(member.memberID)

        if broken:
            logger.warning(f"Found {len(broken)} members with broken paths: {broken}")
        else:
            logger.info("No broken paths found")

        return broken
