"""
Reconciliation Config

Loads reconciliation_config.yaml, merges it over built-in defaults and applies
environment overrides (.env supported via python-dotenv).

Example reconciliation_config.yaml:

    lookup:
      base_url: https://lookup.example.com/api
      probe_timeout_seconds: 10
      max_retries: 2
    networks: [BSC, ETHEREUM, POLYGON, TRON]
    deposit_addresses:
      BSC: '0xabc...'
      TRON: 'TXyz...'
    deposits:
      min_deposit_amount: 30
      amount_tolerance: 0.01
      accepted_tokens: [USDT, USDC, BUSD]
    ledger:
      db_path: deposit_ledger.db
    vip:
      catalog_path: vip_tiers.yaml
    logging:
      level: INFO
      file: logs/reconciliation.log
"""

import copy
import os
import sys
from pathlib import Path
from typing import Dict, Optional

import yaml
from dotenv import load_dotenv
from loguru import logger

DEFAULT_CONFIG_PATH = "reconciliation_config.yaml"

DEFAULT_CONFIG: Dict = {
    'lookup': {
        'base_url': 'http://localhost:8080/api',
        'api_key': None,
        'probe_timeout_seconds': 10.0,
        'max_retries': 2,
    },
    'networks': ['BSC', 'ETHEREUM', 'POLYGON', 'TRON'],
    'deposit_addresses': {},
    'deposits': {
        'min_deposit_amount': 30,
        'amount_tolerance': 0.01,
        'accepted_tokens': ['USDT', 'USDC', 'BUSD'],
    },
    'ledger': {
        'db_path': 'deposit_ledger.db',
    },
    'vip': {
        'catalog_path': None,
    },
    'logging': {
        'level': 'INFO',
        'file': None,
    },
}

# Environment variable -> (section, key)
ENV_OVERRIDES = {
    'LOOKUP_BASE_URL': ('lookup', 'base_url'),
    'LOOKUP_API_KEY': ('lookup', 'api_key'),
    'LEDGER_DB_PATH': ('ledger', 'db_path'),
    'MIN_USDT_DEPOSIT_AMOUNT': ('deposits', 'min_deposit_amount'),
    'LOG_LEVEL': ('logging', 'level'),
}


def _merge(base: Dict, override: Dict) -> Dict:
    """Recursively merge override into a copy of base"""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Optional[str] = DEFAULT_CONFIG_PATH, use_env: bool = True) -> Dict:
    """
    Load configuration from YAML with defaults and env overrides

    Args:
        config_path: Path to YAML config (missing file -> defaults)
        use_env: Apply environment overrides (and read .env)

    Returns:
        Complete config dict
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    if config_path:
        config_file = Path(config_path)
        if config_file.exists():
            try:
                with open(config_file, 'r', encoding='utf-8') as f:
                    loaded = yaml.safe_load(f) or {}
                if not isinstance(loaded, dict):
                    logger.warning(f"Config {config_file} is not a mapping, using defaults")
                else:
                    config = _merge(config, loaded)
                    logger.info(f"Loaded config from {config_file}")
            except (OSError, yaml.YAMLError) as e:
                logger.warning(f"Failed to load config {config_file}: {e}, using defaults")
        else:
            logger.debug(f"Config {config_file} not found, using defaults")

    if use_env:
        load_dotenv()
        for env_name, (section, key) in ENV_OVERRIDES.items():
            value = os.getenv(env_name)
            if value:
                config[section][key] = value
                logger.debug(f"Config override from {env_name}")

    return config


def setup_logging(config: Dict):
    """
    Configure loguru sinks from the 'logging' section

    Args:
        config: Config dict from load_config()
    """
    log_config = config.get('logging', {})
    level = str(log_config.get('level') or 'INFO').upper()

    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
               "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
    )

    log_file = log_config.get('file')
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(log_file, level=level, rotation="10 MB", retention="14 days", enqueue=True)

    logger.debug(f"Logging configured (level: {level}, file: {log_file or 'none'})")
