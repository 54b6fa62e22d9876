"""
Configuration and constants for the zap activity feed.

This module provides:
- Default settings for wallet classification and transfer reconciliation
- Ledger connection settings read from environment variables
- Loading overrides from YAML files
"""
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)

# =============================================================================
# Timestamp Formats
# =============================================================================

# Ledger timestamps are either epoch seconds or one of these ISO-8601 shapes.
# Formats without an offset are read as UTC.
TIMESTAMP_FORMATS: List[str] = [
    "%Y-%m-%dT%H:%M:%S.%fZ",     # 2023-11-14T22:13:20.000Z
    "%Y-%m-%dT%H:%M:%SZ",        # 2023-11-14T22:13:20Z
    "%Y-%m-%dT%H:%M:%S.%f%z",    # 2023-11-14T22:13:20.000+00:00
    "%Y-%m-%dT%H:%M:%S%z",       # 2023-11-14T22:13:20+00:00
    "%Y-%m-%dT%H:%M:%S.%f",      # 2023-11-14T22:13:20.000
    "%Y-%m-%dT%H:%M:%S",         # 2023-11-14T22:13:20
    "%Y-%m-%d %H:%M:%S.%f",      # 2023-11-14 22:13:20.000
    "%Y-%m-%d %H:%M:%S",         # 2023-11-14 22:13:20
]

# =============================================================================
# Wallet Roles
# =============================================================================

# Wallet names look like "<Owner> - <Role>". The role token is compared
# exactly (case-insensitive) against these names.
WALLET_NAME_SEPARATOR: str = " - "
SOURCE_WALLET_NAMES: List[str] = ["Allowance"]
DESTINATION_WALLET_NAMES: List[str] = ["Private"]

# =============================================================================
# Reconciliation Settings
# =============================================================================

# Both ledger rows of an internal transfer share a checking id after this
# prefix is removed.
INTERNAL_PREFIX: str = "internal_"

# Memo marking system-generated clearing entries
EXCLUDED_MEMO_SUBSTRING: str = "Weekly Allowance cleared"

MAX_RECORDS: int = int(os.environ.get("FEED_MAX_RECORDS", "100"))
PAGE_SIZE: int = int(os.environ.get("FEED_PAGE_SIZE", "10"))

# Set to false for a ledger version that emits one merged row per transfer
PAIRED_LEDGER_RECORDS: bool = (
    os.environ.get("PAIRED_LEDGER_RECORDS", "true").lower() == "true"
)

# =============================================================================
# History Windows
# =============================================================================

SECONDS_PER_DAY: int = 86400
FEED_HISTORY_DAYS: int = 255      # roughly 8.5 months
WALLET_LOG_DAYS: int = 30

# =============================================================================
# Ledger API Settings
# =============================================================================

PAYMENTS_LIMIT: int = 100
TOKEN_EXPIRY_HOURS: int = 24
DEFAULT_REQUEST_TIMEOUT: int = int(os.environ.get("LEDGER_TIMEOUT", "30"))
DEFAULT_MAX_WORKERS: int = int(os.environ.get("LEDGER_MAX_WORKERS", "8"))

# =============================================================================
# Application Info
# =============================================================================

APP_NAME: str = "Zap Activity Feed"
APP_VERSION: str = "1.0.0"
REWARD_NAME: str = "Sats"
DEFAULT_USER_ROLE: str = "Teammate"

# =============================================================================
# Credentials
# =============================================================================

def get_ledger_credentials() -> Tuple[str, str, str]:
    """Get the ledger node URL, username and password from the environment."""
    return (
        os.environ.get("LNBITS_NODE_URL", ""),
        os.environ.get("LNBITS_USERNAME", ""),
        os.environ.get("LNBITS_PASSWORD", ""),
    )


# =============================================================================
# Flexible Configuration System
# =============================================================================

class Config:
    """
    Flexible configuration manager that supports:
    - Environment variables
    - Custom YAML configuration files
    - Runtime overrides
    """

    _instance: Optional["Config"] = None
    _settings: Dict[str, Any] = {}

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._load_defaults()
            cls._instance._load_custom_config()
        return cls._instance

    def _load_defaults(self) -> None:
        """Load default settings."""
        node_url, username, password = get_ledger_credentials()
        self._settings = {
            # Ledger connection
            "ledger_node_url": node_url,
            "ledger_username": username,
            "ledger_password": password,
            "request_timeout": DEFAULT_REQUEST_TIMEOUT,
            "max_workers": DEFAULT_MAX_WORKERS,
            "payments_limit": PAYMENTS_LIMIT,

            # Classification
            "source_wallet_names": list(SOURCE_WALLET_NAMES),
            "destination_wallet_names": list(DESTINATION_WALLET_NAMES),

            # Reconciliation
            "internal_prefix": INTERNAL_PREFIX,
            "excluded_memo_substring": EXCLUDED_MEMO_SUBSTRING,
            "max_records": MAX_RECORDS,
            "paired_ledger_records": PAIRED_LEDGER_RECORDS,

            # Presentation
            "page_size": PAGE_SIZE,
            "feed_history_days": FEED_HISTORY_DAYS,
            "wallet_log_days": WALLET_LOG_DAYS,
        }

    def _load_custom_config(self) -> None:
        """Load custom configuration from YAML file if available."""
        config_paths = [
            Path.cwd() / "config.yaml",
            Path.cwd() / "config.yml",
            Path(__file__).parent / "config.yaml",
            Path.home() / ".zapfeed" / "config.yaml",
        ]

        for config_path in config_paths:
            if config_path.exists():
                try:
                    with open(config_path, 'r', encoding='utf-8') as f:
                        custom_config = yaml.safe_load(f) or {}
                        self._settings.update(custom_config)
                        logger.info(f"Loaded config from {config_path}")
                        break
                except (OSError, yaml.YAMLError) as e:
                    logger.warning(f"Could not load config from {config_path}: {e}")

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value."""
        return self._settings.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value at runtime."""
        self._settings[key] = value

    def reload(self) -> None:
        """Reload configuration from files."""
        self._load_defaults()
        self._load_custom_config()


def get_config() -> Config:
    """Get the global configuration instance."""
    return Config()


# =============================================================================
# Helper Functions
# =============================================================================

def get_wallet_vocabularies() -> Dict[str, List[str]]:
    """Get the lower-cased wallet role vocabularies from config."""
    config = get_config()
    return {
        "source": [n.strip().lower() for n in config.get("source_wallet_names", SOURCE_WALLET_NAMES)],
        "destination": [n.strip().lower() for n in config.get("destination_wallet_names", DESTINATION_WALLET_NAMES)],
    }


def get_history_cutoff(days: int, now: float) -> float:
    """Get the epoch-seconds cutoff lying `days` days before `now`."""
    if days <= 0:
        return 0.0
    return now - days * SECONDS_PER_DAY
