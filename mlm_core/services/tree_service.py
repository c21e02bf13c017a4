# mlm_core/services/tree_service.py
"""
Membership tree service - referral tree with stored ancestor paths.

Each member keeps a single parent reference fixed at creation plus a
materialized path (treePath "/1/5/" = root..parent). Acyclicity is
validated once, at insertion; re-parenting is not supported.
"""
from typing import Any, Dict, Iterator, List, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import logging

from models.member import Member, ROOT_PATH
from mlm_core.config.tiers import TIER_CATALOG, TierCatalog
from mlm_core.errors import InvalidParent, MemberNotFound

logger = logging.getLogger(__name__)

# Fields accepted in memberData
MEMBER_FIELDS = ("memberNumber", "nickname", "phone", "status")


class TreeService:
    """Service for maintaining the referral tree."""

    def __init__(self, session: Session, catalog: Optional[TierCatalog] = None):
        self.session = session
        self.catalog = catalog or TIER_CATALOG()

    # ============================================================
    # WRITE
    # ============================================================

    async def addMember(self, parentId: Optional[int], memberData: Optional[Dict[str, Any]] = None) -> int:
        """
        Register a new member under parentId.

        Args:
            parentId: Referrer member ID, None to create a root
            memberData: Optional memberNumber, nickname, phone, status

        Returns:
            New member ID

        Raises:
            InvalidParent: Parent missing, or its stored path is inconsistent
            ValueError: Unknown memberData keys or duplicate memberNumber
        """
        data = dict(memberData or {})
        unknown = set(data) - set(MEMBER_FIELDS)
        if unknown:
            raise ValueError(f"Unknown member fields: {sorted(unknown)}")

        if parentId is None:
            treePath = ROOT_PATH
            depth = 1
        else:
            parent = self.session.get(Member, parentId)
            if parent is None:
                logger.info(f"addMember rejected: parent {parentId} not found")
                raise InvalidParent(parentId)

            self._checkParentPath(parent)

            treePath = parent.subtreePrefix
            depth = parent.depth + 1

        member = Member(
            parentID=parentId,
            treePath=treePath,
            depth=depth,
            tier=self.catalog.lowest.tierId,
            **data
        )
        self.session.add(member)

        try:
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            logger.warning(f"addMember failed for parent {parentId}: {e.orig}")
            raise ValueError(f"Member data conflicts with an existing member: {e.orig}") from e

        logger.info(
            f"Member {member.memberID} added under parent {parentId} "
            f"(depth={depth}, path={treePath})"
        )

        return member.memberID

    def _checkParentPath(self, parent: Member):
        """
        Reject a parent whose stored path is not self-consistent.

        Paths are immutable after insertion, so a fresh child cannot close
        a cycle; only the parent's own record is checked (one query, no
        upline walk). Full parent-link audits live in ChainWalker.
        """
        path = parent.teamPath

        if parent.memberID in path or len(set(path)) != len(path):
            logger.error(f"addMember rejected: parent {parent.memberID} path is cyclic ({parent.treePath})")
            raise InvalidParent(parent.memberID, "parent path is cyclic")

        if parent.depth != len(path) + 1:
            logger.error(
                f"addMember rejected: parent {parent.memberID} depth={parent.depth} "
                f"but path has {len(path)} ancestors"
            )
            raise InvalidParent(parent.memberID, "parent depth does not match its path")

        if path:
            found = self.session.query(Member.memberID).filter(Member.memberID.in_(path)).count()
            if found != len(path):
                logger.error(f"addMember rejected: parent {parent.memberID} path references missing members")
                raise InvalidParent(parent.memberID, "parent path references missing members")

    # ============================================================
    # READ (no locks; each call is a single consistent query)
    # ============================================================

    def getMember(self, memberId: int) -> Member:
        """
        Raises:
            MemberNotFound: If member does not exist
        """
        member = self.session.get(Member, memberId)
        if member is None:
            raise MemberNotFound(memberId)
        return member

    def getAncestors(self, memberId: int) -> List[Member]:
        """
        Ancestors ordered from root to immediate parent.

        Served from the stored path, which is immutable after creation.
        """
        member = self.getMember(memberId)
        path = member.teamPath
        if not path:
            return []

        rows = self.session.query(Member).filter(Member.memberID.in_(path)).all()
        byId = {row.memberID: row for row in rows}

        missing = [ancestorId for ancestorId in path if ancestorId not in byId]
        if missing:
            logger.error(f"Member {memberId} path references missing ancestors {missing}")

        return [byId[ancestorId] for ancestorId in path if ancestorId in byId]

    def getDescendants(self, memberId: int) -> Iterator[Member]:
        """
        Lazy breadth-first iterator over the whole subtree (member excluded).

        Breadth-first order is depth, then memberID. One path-prefix query
        backs the whole iteration.
        """
        member = self.getMember(memberId)
        return self._iterSubtree(member.subtreePrefix)

    def _iterSubtree(self, prefix: str) -> Iterator[Member]:
        query = (
            self.session.query(Member)
            .filter(Member.treePath.like(f"{prefix}%"))
            .order_by(Member.depth, Member.memberID)
            .yield_per(200)
        )
        for row in query:
            yield row

    def getChildren(self, memberId: int) -> List[Member]:
        """Direct referrals ordered by memberID."""
        self.getMember(memberId)
        return (
            self.session.query(Member)
            .filter(Member.parentID == memberId)
            .order_by(Member.memberID)
            .all()
        )

    def countDescendants(self, memberId: int) -> int:
        member = self.getMember(memberId)
        return (
            self.session.query(Member)
            .filter(Member.treePath.like(f"{member.subtreePrefix}%"))
            .count()
        )
