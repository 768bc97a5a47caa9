"""
VIP Eligibility Calculator

Pure arithmetic over the tier catalog: which tier comes next, how much of it
the user's confirmed deposits already cover, and whether they can afford it.

Affordability is measured against cumulative confirmed deposits only. Earned
or bonus balances never count, which is enforced by the CumulativeDeposits
type.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Optional

ZERO = Decimal('0')
HUNDRED = Decimal('100')


@dataclass(frozen=True)
class VipTier:
    """Catalog entry: cumulative deposit required and daily earning"""
    name: str
    cost: Decimal
    daily_earning: Decimal = ZERO

    def __post_init__(self):
        # Accept ints/floats/strings from YAML and spreadsheets
        object.__setattr__(self, 'cost', Decimal(str(self.cost)))
        object.__setattr__(self, 'daily_earning', Decimal(str(self.daily_earning)))
        if self.cost < 0:
            raise ValueError(f"Tier {self.name} has negative cost {self.cost}")

    @property
    def daily_rate_percent(self) -> Decimal:
        if self.cost == 0:
            return ZERO
        return self.daily_earning / self.cost * HUNDRED


@dataclass(frozen=True)
class CumulativeDeposits:
    """Total confirmed deposits of one user (never earnings or bonuses)"""
    amount: Decimal
    deposit_count: int = 0

    def __post_init__(self):
        object.__setattr__(self, 'amount', Decimal(str(self.amount)))
        if self.amount < 0:
            raise ValueError(f"Cumulative deposits cannot be negative: {self.amount}")

    @classmethod
    def zero(cls) -> 'CumulativeDeposits':
        return cls(ZERO, 0)


@dataclass(frozen=True)
class UpgradeInfo:
    """Derived upgrade position relative to the next tier"""
    has_next_tier: bool
    next_tier: Optional[VipTier]
    current_tier: Optional[VipTier]
    upgrade_cost: Decimal
    full_cost: Decimal
    amount_needed: Decimal
    can_afford: bool
    progress_percentage: Decimal
    cumulative_deposits: Decimal

    @property
    def is_max_tier(self) -> bool:
        return not self.has_next_tier


def sort_tiers(tiers: Iterable[VipTier]) -> List[VipTier]:
    """Catalog order: ascending cost"""
    return sorted(tiers, key=lambda tier: tier.cost)


def _require_deposits(cumulative_deposits) -> Decimal:
    if not isinstance(cumulative_deposits, CumulativeDeposits):
        raise TypeError(
            f"cumulative_deposits must be CumulativeDeposits, got {type(cumulative_deposits).__name__}"
        )
    return cumulative_deposits.amount


def _progress(deposits: Decimal, cost: Decimal) -> Decimal:
    if cost <= 0:
        return HUNDRED
    return max(ZERO, min(HUNDRED, deposits / cost * HUNDRED))


def _upgrade_to(tier: VipTier, current_tier: Optional[VipTier], current_cost: Decimal, deposits: Decimal) -> UpgradeInfo:
    return UpgradeInfo(
        has_next_tier=True,
        next_tier=tier,
        current_tier=current_tier,
        upgrade_cost=tier.cost - current_cost,
        full_cost=tier.cost,
        amount_needed=max(ZERO, tier.cost - deposits),
        can_afford=deposits >= tier.cost,
        progress_percentage=_progress(deposits, tier.cost),
        cumulative_deposits=deposits,
    )


def compute_upgrade(
    tiers: Iterable[VipTier],
    current_tier: Optional[VipTier],
    cumulative_deposits: CumulativeDeposits
) -> Optional[UpgradeInfo]:
    """
    Compute the user's position relative to the next VIP tier

    Args:
        tiers: Tier catalog (any order)
        current_tier: User's tier, or None if they have none yet
        cumulative_deposits: Confirmed deposits total

    Returns:
        UpgradeInfo, the terminal "max tier reached" info when no tier costs
        more than the current one, or None for an empty catalog

    Raises:
        TypeError: If cumulative_deposits is not a CumulativeDeposits
    """
    deposits = _require_deposits(cumulative_deposits)

    ordered = sort_tiers(tiers)
    if not ordered:
        return None

    current_cost = current_tier.cost if current_tier is not None else ZERO
    next_tier = next((tier for tier in ordered if tier.cost > current_cost), None)

    if next_tier is None:
        return UpgradeInfo(
            has_next_tier=False,
            next_tier=None,
            current_tier=current_tier,
            upgrade_cost=ZERO,
            full_cost=ZERO,
            amount_needed=ZERO,
            can_afford=True,
            progress_percentage=HUNDRED,
            cumulative_deposits=deposits,
        )

    return _upgrade_to(next_tier, current_tier, current_cost, deposits)


def upgrade_options(
    tiers: Iterable[VipTier],
    current_tier: Optional[VipTier],
    cumulative_deposits: CumulativeDeposits
) -> List[UpgradeInfo]:
    """Every tier above the current one, cheapest upgrade first"""
    deposits = _require_deposits(cumulative_deposits)
    current_cost = current_tier.cost if current_tier is not None else ZERO

    options = [
        _upgrade_to(tier, current_tier, current_cost, deposits)
        for tier in sort_tiers(tiers)
        if tier.cost > current_cost
    ]
    return sorted(options, key=lambda info: info.upgrade_cost)


def projected_earnings(tier: VipTier, days: int) -> Decimal:
    """Earnings of a tier over a number of days"""
    if days < 0:
        raise ValueError(f"days must be non-negative, got {days}")
    return tier.daily_earning * days
