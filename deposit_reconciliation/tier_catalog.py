"""
VIP Tier Catalog

Default catalog, YAML loading, and spreadsheet import (Excel/CSV -> vip_tiers.yaml).

vip_tiers.yaml:

    vip_tiers:
      - name: Starter
        cost: 10
        daily_earning: 1.0
"""

from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd
import yaml
from loguru import logger

from .vip_eligibility import VipTier, sort_tiers

DEFAULT_CATALOG_PATH = "vip_tiers.yaml"

DEFAULT_TIERS: List[VipTier] = [
    VipTier('Starter', 10, '1.00'),
    VipTier('Bronze', 50, '5.00'),
    VipTier('Silver', 100, '10.00'),
    VipTier('Gold', 150, '16.50'),
    VipTier('Platinum', 250, '27.50'),
    VipTier('Diamond', 300, '33.00'),
    VipTier('Elite', 500, '55.00'),
    VipTier('Master', 650, '74.75'),
    VipTier('Legend', 900, '108.00'),
    VipTier('Supreme', 1000, '120.00'),
    VipTier('Ultimate', 1500, '187.50'),
    VipTier('Mega', 10000, '1250.00'),
    VipTier('Giga', 50000, '6500.00'),
    VipTier('Tera', 200000, '26000.00'),
]


def tier_from_dict(entry: Dict) -> VipTier:
    """Build a tier from a YAML entry ('amount' accepted for 'cost')"""
    cost = entry.get('cost', entry.get('amount'))
    if cost is None or not entry.get('name'):
        raise ValueError(f"Tier entry needs name and cost: {entry}")
    return VipTier(str(entry['name']), cost, entry.get('daily_earning', 0))


def tier_to_dict(tier: VipTier) -> Dict:
    return {
        'name': tier.name,
        'cost': float(tier.cost),
        'daily_earning': float(tier.daily_earning),
    }


def load_tiers(catalog_path: Optional[str] = DEFAULT_CATALOG_PATH) -> List[VipTier]:
    """
    Load the tier catalog from YAML

    Args:
        catalog_path: Path to vip_tiers.yaml (None -> default catalog)

    Returns:
        Tiers in ascending cost order; the default catalog if the file is
        missing or unreadable
    """
    if not catalog_path:
        return sort_tiers(DEFAULT_TIERS)

    catalog_file = Path(catalog_path)
    if not catalog_file.exists():
        logger.debug(f"Tier catalog {catalog_file} not found, using default catalog")
        return sort_tiers(DEFAULT_TIERS)

    try:
        with open(catalog_file, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        tiers = [tier_from_dict(entry) for entry in data.get('vip_tiers', [])]
        logger.info(f"Loaded {len(tiers)} VIP tiers from {catalog_file}")
        return sort_tiers(tiers)

    except (OSError, yaml.YAMLError, ValueError, TypeError, AttributeError) as e:
        logger.warning(f"Failed to load tier catalog {catalog_file}: {e}, using default catalog")
        return sort_tiers(DEFAULT_TIERS)


def find_tier(tiers: List[VipTier], name: Optional[str]) -> Optional[VipTier]:
    """Case-insensitive lookup by name"""
    if not name:
        return None
    wanted = name.strip().lower()
    return next((tier for tier in tiers if tier.name.lower() == wanted), None)


class TierCatalogParser:
    """
    Parse a VIP tier spreadsheet and generate vip_tiers.yaml

    Features:
    - Excel (.xlsx/.xls) and CSV input
    - Flexible column names (amount/cost/price, daily earning variants)
    - Skips inactive and incomplete rows
    """

    # Spreadsheet header -> field
    COLUMN_MAPPING = {
        'name': 'name',
        'vip': 'name',
        'level': 'name',
        'cost': 'cost',
        'amount': 'cost',
        'price': 'cost',
        'daily_earning': 'daily_earning',
        'dailyearning': 'daily_earning',
        'daily earning': 'daily_earning',
        'daily': 'daily_earning',
        'is_active': 'is_active',
        'isactive': 'is_active',
        'active': 'is_active',
    }

    def __init__(self, spreadsheet_path: str, sheet_name=0):
        """
        Initialize parser

        Args:
            spreadsheet_path: Path to Excel or CSV file
            sheet_name: Excel sheet (name or index)
        """
        self.spreadsheet_path = Path(spreadsheet_path)
        self.sheet_name = sheet_name
        self.tiers: List[VipTier] = []

    def _read(self) -> pd.DataFrame:
        if self.spreadsheet_path.suffix.lower() == '.csv':
            return pd.read_csv(self.spreadsheet_path)
        return pd.read_excel(self.spreadsheet_path, sheet_name=self.sheet_name)

    def parse(self) -> List[VipTier]:
        """
        Parse tiers from the spreadsheet

        Returns:
            Tiers in ascending cost order

        Raises:
            ValueError: If name or cost column is missing
        """
        logger.info(f"Parsing VIP tiers from {self.spreadsheet_path}")
        df = self._read()

        df = df.rename(columns=lambda c: self.COLUMN_MAPPING.get(str(c).strip().lower(), str(c)))
        missing = {'name', 'cost'} - set(df.columns)
        if missing:
            raise ValueError(f"Spreadsheet is missing column(s): {', '.join(sorted(missing))}")

        tiers = []
        for _, row in df.iterrows():
            if pd.isna(row['name']) or pd.isna(row['cost']):
                continue

            if 'is_active' in df.columns and pd.notna(row['is_active']):
                if str(row['is_active']).strip().lower() in ('false', '0', 'no', 'n'):
                    continue

            daily = row['daily_earning'] if 'daily_earning' in df.columns and pd.notna(row['daily_earning']) else 0

            try:
                tiers.append(VipTier(str(row['name']).strip(), str(row['cost']).strip(), str(daily).strip()))
            except (ValueError, ArithmeticError) as e:
                logger.warning(f"Skipping tier row {row['name']}: {e}")

        self.tiers = sort_tiers(tiers)
        logger.info(f"Parsed {len(self.tiers)} VIP tiers")
        return self.tiers

    def generate_yaml(self, output_path: str = DEFAULT_CATALOG_PATH) -> Path:
        """
        Generate vip_tiers.yaml

        Args:
            output_path: Output file path
        """
        tiers = self.parse()

        catalog = {
            'vip_tiers': [tier_to_dict(tier) for tier in tiers],
            'metadata': {
                'generated_at': datetime.now().isoformat(),
                'source': str(self.spreadsheet_path),
                'tier_count': len(tiers),
            },
        }

        output_path = Path(output_path)
        with open(output_path, 'w', encoding='utf-8') as f:
            yaml.dump(catalog, f, default_flow_style=False, sort_keys=False, allow_unicode=True)

        logger.info(f"✓ Generated {output_path}")
        return output_path

    def print_summary(self):
        """Print catalog summary"""
        print("\n" + "="*80)
        print("VIP TIER CATALOG SUMMARY")
        print("="*80)

        for tier in self.tiers:
            print(
                f"  {tier.name:12s} cost ${tier.cost:>12,.2f}   "
                f"daily ${tier.daily_earning:>10,.2f}   ({tier.daily_rate_percent:.2f}%/day)"
            )

        print(f"\n  Total tiers: {len(self.tiers)}")
        print("="*80)


# Standalone test
if __name__ == "__main__":
    import sys

    if len(sys.argv) < 2:
        print("usage: python -m deposit_reconciliation.tier_catalog <tiers.xlsx|tiers.csv> [output.yaml]")
        sys.exit(1)

    parser = TierCatalogParser(sys.argv[1])
    parser.generate_yaml(sys.argv[2] if len(sys.argv) > 2 else DEFAULT_CATALOG_PATH)
    parser.print_summary()
