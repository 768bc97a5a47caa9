"""
VIP Upgrade Service

Connects ledger totals to the eligibility calculator and guards tier
selection before any purchase: no downgrades, no tiers the user's confirmed
deposits cannot cover.
"""

from typing import Dict, List, Optional

from loguru import logger

from .deposit_ledger import DepositLedger
from .exceptions import TierSelectionError
from .tier_catalog import find_tier, load_tiers
from .vip_eligibility import UpgradeInfo, VipTier, compute_upgrade, upgrade_options


class VipUpgradeService:
    """Upgrade position and tier-selection checks for ledger users"""

    def __init__(self, ledger: DepositLedger, tiers: Optional[List[VipTier]] = None):
        self.ledger = ledger
        self.tiers = list(tiers) if tiers is not None else load_tiers(None)

    @classmethod
    def from_config(cls, config: Dict, ledger: DepositLedger) -> 'VipUpgradeService':
        return cls(ledger, load_tiers(config['vip'].get('catalog_path')))

    def upgrade_info(self, user_id: str, current_tier: Optional[VipTier]) -> Optional[UpgradeInfo]:
        """Next-tier position from the user's confirmed deposits"""
        deposits = self.ledger.cumulative_deposits(user_id)
        return compute_upgrade(self.tiers, current_tier, deposits)

    def options(self, user_id: str, current_tier: Optional[VipTier]) -> List[UpgradeInfo]:
        """Every tier above the current one, cheapest upgrade first"""
        return upgrade_options(self.tiers, current_tier, self.ledger.cumulative_deposits(user_id))

    def validate_selection(self, user_id: str, current_tier: Optional[VipTier], target) -> VipTier:
        """
        Check a requested tier change

        Args:
            user_id: User making the selection
            current_tier: User's tier (None if none yet)
            target: VipTier or tier name

        Returns:
            The catalog tier to purchase

        Raises:
            TierSelectionError: Unknown tier, downgrade, same tier, or not
                covered by confirmed deposits
        """
        tier = target if isinstance(target, VipTier) else find_tier(self.tiers, target)
        if tier is None:
            raise TierSelectionError(f"Unknown VIP tier: {target}")

        if current_tier is not None and tier.cost <= current_tier.cost:
            raise TierSelectionError(
                f"Cannot select {tier.name} (${tier.cost}): not above current tier "
                f"{current_tier.name} (${current_tier.cost})"
            )

        deposits = self.ledger.cumulative_deposits(user_id)
        if deposits.amount < tier.cost:
            raise TierSelectionError(
                f"Insufficient deposits for {tier.name}: need ${tier.cost}, "
                f"confirmed deposits ${deposits.amount} (${tier.cost - deposits.amount} more)"
            )

        logger.info(f"✓ User {user_id} may upgrade to {tier.name}")
        return tier
