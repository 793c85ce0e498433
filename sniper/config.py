# sniper/config.py
import copy
import os
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import load_dotenv, find_dotenv


class ConfigError(Exception):
    """Missing credential or invalid setting. The bot must not start."""


VENUES = ["pump", "raydium", "pump-amm", "launchlab", "raydium-cpmm", "bonk", "auto"]

DEFAULTS: Dict[str, Any] = {
    "system": {
        "dry_run": False,
        "log_dir": "logs",
        "log_level": "INFO",
    },
    "feed": {
        "url": "wss://api.solanastreaming.com/",
        "heartbeat_interval_s": 20,
        "liveness_timeout_s": 60,
        "liveness_check_interval_s": 30,
        "reconnect_base_s": 1,
        "reconnect_cap_s": 30,
        "max_reconnect_attempts": 10,
    },
    "execution": {
        "trade_url": "https://pumpportal.fun/api/trade-local",
        "rpc_url": "",
        "pool": "pump",
        "venues": list(VENUES),
        "network_timeout_ms": 5000,
    },
    "admission": {
        "staleness_threshold_ms": 900,
    },
    "acquire": {
        "amount_sol": 0.5,
        "slippage": 1000,
        "priority_fee": 0.00000000005,
        "settle_delay_ms": 200,
        "confirm_interval_ms": 200,
    },
    "partial_dispose": {
        "fraction_pct": 70,
        "slippage": 1000,
        "priority_fee": 0,
        "delay_ms": 500,
        "retry_interval_ms": 1000,
    },
    "full_dispose": {
        "slippage": 1000,
        "priority_fee": 0,
        "delay_ms": 1500,
        "retry_interval_ms": 300,
        "settle_delay_ms": 700,
        "confirm_attempts": 3,
        "confirm_interval_ms": 200,
    },
    "stats": {
        "snapshot_interval_s": 60,
        "trade_log": "logs/sequences.csv",
    },
}


def _deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(dict(base))
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def build_config(overrides: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """Defaults with `overrides` merged on top. No credentials, no validation."""
    return _deep_merge(DEFAULTS, overrides or {})


def validate_config(config: Dict[str, Any]):
    creds = config.get("credentials", {})
    if not creds.get("private_key"):
        raise ConfigError("Missing environment variable PRIVATE_KEY")
    if not creds.get("feed_api_key"):
        raise ConfigError("Missing environment variable SOLANA_STREAMING_API_KEY")
    if not config["execution"].get("rpc_url"):
        raise ConfigError("No RPC endpoint: set execution.rpc_url or RPC_URL")

    if config["admission"]["staleness_threshold_ms"] <= 0:
        raise ConfigError("admission.staleness_threshold_ms must be positive")
    if config["full_dispose"]["confirm_attempts"] < 1:
        raise ConfigError("full_dispose.confirm_attempts must be at least 1")
    if not 0 < config["partial_dispose"]["fraction_pct"] <= 100:
        raise ConfigError("partial_dispose.fraction_pct must be in (0, 100]")
    if config["acquire"]["amount_sol"] <= 0:
        raise ConfigError("acquire.amount_sol must be positive")
    if config["execution"]["pool"] not in config["execution"]["venues"]:
        raise ConfigError(f"Unknown pool '{config['execution']['pool']}'")


def load_config(path: str = "config.yaml", environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """
    Reads tuning from YAML and credentials from the environment (.env supported).
    Read once at startup; components copy what they need.
    """
    if environ is None:
        load_dotenv(dotenv_path=find_dotenv(usecwd=True))
        environ = os.environ

    if not os.path.exists(path):
        raise ConfigError(f"Config file not found: {path}")
    with open(path, "r") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, Mapping):
        raise ConfigError(f"{path} must contain a mapping at the top level")

    config = build_config(raw)
    config["credentials"] = {
        "private_key": environ.get("PRIVATE_KEY", "").strip(),
        "public_key": environ.get("PUBLIC_KEY", "").strip(),
        "feed_api_key": environ.get("SOLANA_STREAMING_API_KEY", "").strip(),
    }
    if environ.get("RPC_URL"):
        config["execution"]["rpc_url"] = environ["RPC_URL"].strip()

    validate_config(config)
    return config
