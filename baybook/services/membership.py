"""
Membership Tiers

Tier table for bay-time pricing and the membership lookup collaborator used by
the ledger when a booking request does not name a tier explicitly.

Tiers:
- par / family_par: 50% off bay time
- birdie, eagle, family_birdie, family_eagle, corporate: unlimited play
- league_player / league_team: league pricing, no bay discount
- monthly / annual: legacy plans, 10% off
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, Iterable, Optional, Protocol

from ..utils.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class MembershipTier:
    key: str
    name: str
    hourly_discount: Decimal  # fraction, 0.5 = 50% off
    unlimited_play: bool = False


MEMBERSHIP_TIERS: Dict[str, MembershipTier] = {
    "par": MembershipTier("par", "Par", Decimal("0.5")),
    "birdie": MembershipTier("birdie", "Birdie", Decimal("1"), unlimited_play=True),
    "eagle": MembershipTier("eagle", "Eagle", Decimal("1"), unlimited_play=True),
    "family_par": MembershipTier("family_par", "Family Par", Decimal("0.5")),
    "family_birdie": MembershipTier("family_birdie", "Family Birdie", Decimal("1"), unlimited_play=True),
    "family_eagle": MembershipTier("family_eagle", "Family Eagle", Decimal("1"), unlimited_play=True),
    "corporate": MembershipTier("corporate", "Corporate", Decimal("1"), unlimited_play=True),
    "league_player": MembershipTier("league_player", "League Player", Decimal("0")),
    "league_team": MembershipTier("league_team", "League Team", Decimal("0")),
    # Legacy plans
    "monthly": MembershipTier("monthly", "Monthly", Decimal("0.10")),
    "annual": MembershipTier("annual", "Annual", Decimal("0.10")),
}


def get_tier(tier_key: Optional[str]) -> Optional[MembershipTier]:
    """Case-insensitive tier lookup; unknown tiers price as non-members."""
    if not tier_key:
        return None
    return MEMBERSHIP_TIERS.get(tier_key.strip().lower().replace(" ", "_").replace("-", "_"))


class MembershipLookup(Protocol):
    def find_active_membership(self, customer_name: str) -> Optional[str]:
        ...


class StaticMembershipDirectory:
    """In-process directory, keyed by customer name (case-insensitive)."""

    def __init__(self, memberships: Optional[Dict[str, str]] = None):
        self._memberships = {
            name.strip().lower(): tier for name, tier in (memberships or {}).items()
        }

    def set_membership(self, customer_name: str, tier: Optional[str]):
        key = customer_name.strip().lower()
        if tier:
            self._memberships[key] = tier
        else:
            self._memberships.pop(key, None)

    def find_active_membership(self, customer_name: str) -> Optional[str]:
        if not customer_name:
            return None
        return self._memberships.get(customer_name.strip().lower())


class RemoteMembershipDirectory:
    """
    Reads the remote "memberships" collection.

    Records are {"customer_name", "tier", "status"}; only status "active"
    counts. Network failures resolve to None so a booking prices as a
    non-member rather than failing. While the terminal is offline the
    lookup is skipped, and a network failure during a lookup reports the
    terminal offline through on_network_error.

    The lookup runs inside booking creation, so the client given here should
    be a single-attempt, short-timeout one (see factory.build_ledger).
    """

    COLLECTION = "memberships"

    def __init__(
        self,
        client,
        is_online: Optional[Callable[[], bool]] = None,
        on_network_error: Optional[Callable[[], None]] = None
    ):
        self.client = client
        self.is_online = is_online
        self.on_network_error = on_network_error

    def _active_records(self) -> Iterable[dict]:
        if self.is_online is not None and not self.is_online():
            logger.debug("Offline, skipping remote membership lookup")
            return []
        response = self.client.list(self.COLLECTION)
        if not response.success:
            logger.warning(f"Membership lookup unavailable: {response.error}")
            if response.network_error and self.on_network_error is not None:
                self.on_network_error()
            return []
        records = response.data or []
        return [r for r in records if (r.get("status") or "active").lower() == "active"]

    def find_active_membership(self, customer_name: str) -> Optional[str]:
        if not customer_name:
            return None
        wanted = customer_name.strip().lower()
        for record in self._active_records():
            if (record.get("customer_name") or "").strip().lower() == wanted:
                tier = record.get("tier")
                if get_tier(tier):
                    return tier
        return None
