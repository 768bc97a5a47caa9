"""Tests for configuration loading and the deposit address registry"""

from pathlib import Path

import pytest
import yaml

from deposit_reconciliation.address_registry import KnownAddressRegistry
from deposit_reconciliation.config import DEFAULT_CONFIG, load_config
from deposit_reconciliation.exceptions import MissingDepositAddress
from deposit_reconciliation.network_lookup import Network
from deposit_reconciliation.reconciliation_engine import ReconciliationEngine

from conftest import FakeLookupClient


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in ("LOOKUP_BASE_URL", "LOOKUP_API_KEY", "LEDGER_DB_PATH", "MIN_USDT_DEPOSIT_AMOUNT", "LOG_LEVEL",
                 "BSC_WALLET_ADDRESS", "ETH_WALLET_ADDRESS", "POLYGON_WALLET_ADDRESS", "TRON_WALLET_ADDRESS"):
        monkeypatch.delenv(name, raising=False)


def test_defaults_when_file_missing(tmp_path):
    assert load_config(str(tmp_path / "absent.yaml"), use_env=False) == DEFAULT_CONFIG


def test_yaml_merges_over_defaults(tmp_path):
    path = tmp_path / "reconciliation_config.yaml"
    path.write_text(yaml.safe_dump({
        "lookup": {"probe_timeout_seconds": 3},
        "deposit_addresses": {"BSC": "0xabc"},
    }))

    config = load_config(str(path), use_env=False)

    assert config["lookup"]["probe_timeout_seconds"] == 3
    assert config["lookup"]["max_retries"] == 2
    assert config["deposit_addresses"] == {"BSC": "0xabc"}


def test_unreadable_yaml_falls_back(tmp_path):
    path = tmp_path / "reconciliation_config.yaml"
    path.write_text("lookup: [unclosed\n")
    assert load_config(str(path), use_env=False) == DEFAULT_CONFIG


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("LOOKUP_BASE_URL", "https://lookup.example.com")
    monkeypatch.setenv("MIN_USDT_DEPOSIT_AMOUNT", "50")

    config = load_config(None)

    assert config["lookup"]["base_url"] == "https://lookup.example.com"
    assert config["deposits"]["min_deposit_amount"] == "50"


def test_registry_missing_address():
    registry = KnownAddressRegistry({"BSC": "0xabc", "SOLANA": "ignored"})

    assert registry.address_for("BEP20") == "0xabc"
    assert registry.has_address(Network.BSC)
    assert not registry.has_address(Network.TRON)
    with pytest.raises(MissingDepositAddress):
        registry.address_for(Network.TRON)
    with pytest.raises(MissingDepositAddress):
        registry.matches(Network.TRON, "TXyz")


def test_registry_env_takes_precedence(monkeypatch):
    monkeypatch.setenv("TRON_WALLET_ADDRESS", " TEnvAddress ")
    config = load_config(None)
    config["deposit_addresses"] = {"TRON": "TConfigAddress", "BSC": "0xabc"}

    registry = KnownAddressRegistry.from_config(config)

    assert registry.address_for(Network.TRON) == "TEnvAddress"
    assert registry.as_dict() == {"BSC": "0xabc", "TRON": "TEnvAddress"}


def test_engine_from_config():
    config = load_config(None, use_env=False)
    config["networks"] = ["TRC20", "BSC"]

    engine = ReconciliationEngine.from_config(config, FakeLookupClient())

    assert engine.networks == [Network.TRON, Network.BSC]
    assert engine.probe_timeout == 10.0


def test_accepted_tokens_from_config():
    config = load_config(None, use_env=False)
    assert config["deposits"]["accepted_tokens"] == ["USDT", "USDC", "BUSD"]

    config["deposits"]["accepted_tokens"] = ["usdt", " busd "]
    engine = ReconciliationEngine.from_config(config, FakeLookupClient())

    assert engine.accepted_tokens == ("USDT", "BUSD")


def test_yaml_token_list_replaces_default(tmp_path):
    path = tmp_path / "reconciliation_config.yaml"
    path.write_text(yaml.safe_dump({"deposits": {"accepted_tokens": ["USDT"]}}))

    config = load_config(str(path), use_env=False)

    assert config["deposits"]["accepted_tokens"] == ["USDT"]
    assert config["deposits"]["min_deposit_amount"] == 30


def test_shipped_sample_config():
    sample = Path(__file__).parent / "reconciliation_config.yaml"

    config = load_config(str(sample), use_env=False)

    assert config["networks"] == ["BSC", "ETHEREUM", "POLYGON", "TRON"]
    assert config["deposits"]["accepted_tokens"] == ["USDT", "USDC", "BUSD"]
    assert config["deposits"]["min_deposit_amount"] == 30
