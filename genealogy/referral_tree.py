# genealogy/referral_tree.py
from dataclasses import dataclass, field
from typing import List, Dict, Any, Iterable, Iterator, Optional, Set, Tuple
import logging

from extensions import db
from models import User, Investment, InvestmentStatus
from genealogy.config import CommissionConfigHelper
from genealogy.errors import NotFoundError


logger = logging.getLogger(__name__)

DEFAULT_TREE_DEPTH = CommissionConfigHelper.MAX_LEVEL
IN_CLAUSE_CHUNK = 500


@dataclass
class TreeNode:
    """Plain serialisable genealogy node handed to the layout step."""
    id: int
    display_name: str
    level: int
    is_active: bool = False
    children: List["TreeNode"] = field(default_factory=list)

    def iter_nodes(self) -> Iterator["TreeNode"]:
        """Depth-first, parent before children."""
        yield self
        for child in self.children:
            yield from child.iter_nodes()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "displayName": self.display_name,
            "level": self.level,
            "isActive": self.is_active,
            "children": [child.to_dict() for child in self.children],
        }


def _chunks(ids: List[int], size: int = IN_CLAUSE_CHUNK) -> Iterator[List[int]]:
    for start in range(0, len(ids), size):
        yield ids[start:start + size]


def _check_depth(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{name} must be a non-negative integer, got {value!r}")
    return value


class ReferralTreeHelper:
    """
    Sponsor-pointer referral forest.
    Only users.sponsor_id is stored; downlines are derived by querying on the
    sponsor_id index one level at a time.
    """

    @staticmethod
    def get_user(user_id: int) -> User:
        user = db.session.get(User, user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user

    @staticmethod
    def get_sponsor_chain(user_id: int, max_levels: int = CommissionConfigHelper.MAX_LEVEL) -> List[User]:
        """
        Ancestors of user_id, nearest sponsor first, at most max_levels long.
        Stops early at a root user or on a corrupt (cyclic) link.
        """
        _check_depth(max_levels, "max_levels")
        user = ReferralTreeHelper.get_user(user_id)

        chain = []
        visited = {user.id}
        sponsor_id = user.sponsor_id
        while sponsor_id is not None and len(chain) < max_levels:
            if sponsor_id in visited:
                logger.error(f"Cycle detected in sponsor chain of user {user_id} at user {sponsor_id}")
                break
            sponsor = db.session.get(User, sponsor_id)
            if sponsor is None:
                logger.warning(f"Dangling sponsor reference {sponsor_id} in chain of user {user_id}")
                break
            visited.add(sponsor.id)
            chain.append(sponsor)
            sponsor_id = sponsor.sponsor_id

        return chain

    @staticmethod
    def validate_sponsor(sponsor: Optional[User], new_user_id: Optional[int] = None) -> Tuple[bool, str]:
        """
        Validate that `sponsor` may sponsor a new registration.
        Returns: (is_valid, message)
        """
        if sponsor is None:
            return False, "Sponsor does not exist"

        if not sponsor.is_active:
            return False, "Sponsor account is inactive"

        if new_user_id is not None:
            if sponsor.id == new_user_id:
                return False, "Self-referral is not allowed"
            # unbounded walk: a cycle anywhere above the sponsor must be caught
            upline_ids = {u.id for u in ReferralTreeHelper.get_sponsor_chain(sponsor.id, max_levels=10_000)}
            if new_user_id in upline_ids:
                return False, "Circular referral detected"

        return True, "Valid sponsor"

    @staticmethod
    def _active_user_ids(user_ids: Iterable[int]) -> Set[int]:
        """Users among user_ids holding at least one active investment."""
        ids = list(user_ids)
        active = set()
        for chunk in _chunks(ids):
            rows = (
                db.session.query(Investment.user_id)
                .filter(
                    Investment.user_id.in_(chunk),
                    Investment.status == InvestmentStatus.ACTIVE.value,
                )
                .distinct()
                .all()
            )
            active.update(row.user_id for row in rows)
        return active

    @staticmethod
    def _recruits_of(sponsor_ids: List[int]) -> List[User]:
        """Direct recruits of the given sponsors, oldest registration first."""
        recruits = []
        for chunk in _chunks(sponsor_ids):
            recruits.extend(
                User.query
                .filter(User.sponsor_id.in_(chunk))
                .order_by(User.created_at.asc(), User.id.asc())
                .all()
            )
        return recruits

    @staticmethod
    def _walk_downline(root_user_id: int, max_depth: int) -> Iterator[Tuple[int, User]]:
        """Yield (level, recruit) breadth first. A user reached twice is skipped."""
        seen = {root_user_id}
        frontier = [root_user_id]
        level = 0

        while frontier and level < max_depth:
            level += 1
            next_frontier = []
            for recruit in ReferralTreeHelper._recruits_of(frontier):
                if recruit.id in seen:
                    logger.error(f"Cycle detected below user {root_user_id}: user {recruit.id} seen twice")
                    continue
                seen.add(recruit.id)
                next_frontier.append(recruit.id)
                yield level, recruit
            frontier = next_frontier

    @staticmethod
    def build_tree(root_user_id: int, max_depth: int = DEFAULT_TREE_DEPTH) -> TreeNode:
        """
        Bounded-depth downline of root_user_id.
        Root is level 0; nodes deeper than max_depth are omitted.
        """
        _check_depth(max_depth, "max_depth")
        root = ReferralTreeHelper.get_user(root_user_id)

        root_node = TreeNode(id=root.id, display_name=root.display_name, level=0)
        nodes = {root.id: root_node}
        for level, recruit in ReferralTreeHelper._walk_downline(root.id, max_depth):
            node = TreeNode(id=recruit.id, display_name=recruit.display_name, level=level)
            nodes[recruit.sponsor_id].children.append(node)
            nodes[recruit.id] = node

        active_ids = ReferralTreeHelper._active_user_ids(nodes.keys())
        for user_id, node in nodes.items():
            node.is_active = user_id in active_ids

        logger.debug(f"Built genealogy tree for user {root_user_id}: {len(nodes)} nodes")
        return root_node

    @staticmethod
    def get_referrals_by_level(user_id: int, max_depth: int = DEFAULT_TREE_DEPTH) -> Dict[int, List[Dict[str, Any]]]:
        """Downline members with their details, grouped by level below user_id."""
        _check_depth(max_depth, "max_depth")
        ReferralTreeHelper.get_user(user_id)

        downline = list(ReferralTreeHelper._walk_downline(user_id, max_depth))
        active_ids = ReferralTreeHelper._active_user_ids(recruit.id for _, recruit in downline)

        by_level: Dict[int, List[Dict[str, Any]]] = {}
        for level, recruit in downline:
            by_level.setdefault(level, []).append({
                "id": recruit.id,
                "username": recruit.username,
                "displayName": recruit.display_name,
                "sponsorId": recruit.sponsor_id,
                "level": level,
                "isActive": recruit.id in active_ids,
                "accountActive": recruit.is_active,
                "memberSince": recruit.created_at.isoformat() if recruit.created_at else None,
            })
        return by_level

    @staticmethod
    def get_network_summary(user_id: int, max_depth: int = DEFAULT_TREE_DEPTH) -> Dict[str, Any]:
        """
        Upline length, direct recruits and per-level downline counts for a user
        """
        tree = ReferralTreeHelper.build_tree(user_id, max_depth)
        upline = ReferralTreeHelper.get_sponsor_chain(user_id, CommissionConfigHelper.MAX_LEVEL)

        level_breakdown = {}
        active_downline = 0
        for node in tree.iter_nodes():
            if node.level == 0:
                continue
            level_breakdown[node.level] = level_breakdown.get(node.level, 0) + 1
            if node.is_active:
                active_downline += 1

        return {
            'user_id': user_id,
            'sponsor_id': upline[0].id if upline else None,
            'upline_count': len(upline),
            'direct_recruits': [
                {'id': child.id, 'displayName': child.display_name, 'isActive': child.is_active}
                for child in tree.children
            ],
            'direct_recruits_count': len(tree.children),
            'total_downline': sum(level_breakdown.values()),
            'active_downline': active_downline,
            'level_breakdown': level_breakdown,
            'max_depth': max_depth,
        }
