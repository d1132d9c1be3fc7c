"""
Configuration Management
"""

import json
import logging
import os
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional

from web3 import Web3

from nft_raffle.lottery.models import AccrualPolicy, CloseMode, RoundConfig, WithdrawalPolicy

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = Path("config") / "raffle.conf"

ENV_SECTIONS = {
    "RAFFLE_": "raffle",
    "CHAIN_": "chain",
    "OPERATOR_": "operator",
    "SERVER_": "server",
    "APP_": "app",
}


def load_config(config_file: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from a JSON file and environment variables"""
    config: Dict[str, Any] = {}

    path = Path(config_file or os.getenv("RAFFLE_CONFIG_FILE") or DEFAULT_CONFIG_FILE)
    if path.exists():
        with open(path, "r", encoding="utf-8") as f:
            file_config = json.load(f)
        config.update(file_config)
        logger.info(f"Loaded configuration from {path}")
    else:
        logger.warning(f"Config file {path} not found. Will only use environment variables.")

    config = _apply_env_overrides(config)

    redacted = _redact(config)
    logger.info(f"Configuration after applying environment overrides: {json.dumps(redacted, indent=2, default=str)}")

    return config


def _apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides to configuration"""
    for key, value in os.environ.items():
        if key == "RAFFLE_CONFIG_FILE":
            continue
        for prefix, section in ENV_SECTIONS.items():
            if key.startswith(prefix):
                config.setdefault(section, {})[key[len(prefix):].lower()] = value
                break

    return config


def _redact(config: Dict[str, Any]) -> Dict[str, Any]:
    redacted: Dict[str, Any] = {}
    for section, values in config.items():
        if isinstance(values, dict):
            redacted[section] = {
                k: ("***" if "private_key" in k else v) for k, v in values.items()
            }
        else:
            redacted[section] = values
    return redacted


def get_config_value(config: Dict[str, Any], key_path: str, default=None):
    """Get configuration value by dot-separated key path"""
    keys = key_path.split('.')
    value = config

    try:
        for key in keys:
            value = value[key]
        return value
    except (KeyError, TypeError):
        return default


def as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


def round_config_from(config: Dict[str, Any]) -> RoundConfig:
    """Build a RoundConfig from the ``raffle`` section.

    The entry fee is given either in wei (``entry_fee_wei``) or in ether
    (``entry_fee``, a decimal string such as "0.01").
    """
    raffle = config.get("raffle", {})

    if raffle.get("entry_fee_wei") not in (None, ""):
        entry_fee = int(raffle["entry_fee_wei"])
    else:
        entry_fee = Web3.to_wei(Decimal(str(raffle.get("entry_fee", "0.01"))), "ether")

    return RoundConfig(
        entry_fee=int(entry_fee),
        capacity=int(raffle.get("capacity", 5)),
        close_mode=CloseMode(str(raffle.get("close_mode", CloseMode.CAPACITY.value)).lower()),
        round_duration=_optional_int(raffle.get("round_duration")),
        operator_fee_bps=int(raffle.get("operator_fee_bps", 0)),
        accrual_policy=AccrualPolicy(str(raffle.get("accrual_policy", AccrualPolicy.ADDITIVE.value)).lower()),
        withdrawal_policy=WithdrawalPolicy(
            str(raffle.get("withdrawal_policy", WithdrawalPolicy.PROFIT.value)).lower()
        ),
        reopen_after_settle=as_bool(raffle.get("reopen_after_settle", True)),
        release_stranded=as_bool(raffle.get("release_stranded", False)),
    )
