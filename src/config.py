"""
Royalty Ledger - Configuration

Environment Variables:
    ROYALTY_TOTAL_SHARE_UNITS=10000
    ROYALTY_GLOBAL_MINIMUM=0
    ROYALTY_LOCK_TIMEOUT=5.0
    ROYALTY_LOCK_TTL=60.0
    ROYALTY_STORAGE_BACKEND=memory
    ROYALTY_STORAGE_PATH=royalty_ledger.json
    ROYALTY_ADMIN_CALLER=treasury-admin
    REDIS_URL=redis://localhost:6379/0
    LOG_LEVEL=INFO
    LOG_FORMAT=json
"""

import os
from dataclasses import dataclass

from royalty_exceptions import ConfigurationError
from track_accounts import DEFAULT_TOTAL_SHARE_UNITS

STORAGE_BACKENDS = ("memory", "json")


@dataclass
class LedgerConfig:
    """Configuration for a RoyaltyLedger instance."""

    # Share accounting
    total_share_units: int = DEFAULT_TOTAL_SHARE_UNITS
    global_minimum: int = 0

    # Per-track locking
    lock_timeout: float = 5.0  # Seconds to wait before BusyError
    lock_ttl: float = 60.0  # Distributed lock expiry
    redis_url: str | None = None

    # Persistence
    storage_backend: str = "memory"
    storage_path: str = "royalty_ledger.json"

    # Capability bootstrap
    admin_caller: str | None = None

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"

    @classmethod
    def from_env(cls) -> "LedgerConfig":
        """Create configuration from environment variables."""
        return cls(
            total_share_units=int(os.getenv("ROYALTY_TOTAL_SHARE_UNITS", str(DEFAULT_TOTAL_SHARE_UNITS))),
            global_minimum=int(os.getenv("ROYALTY_GLOBAL_MINIMUM", "0")),
            lock_timeout=float(os.getenv("ROYALTY_LOCK_TIMEOUT", "5.0")),
            lock_ttl=float(os.getenv("ROYALTY_LOCK_TTL", "60.0")),
            redis_url=os.getenv("REDIS_URL") or None,
            storage_backend=os.getenv("ROYALTY_STORAGE_BACKEND", "memory").lower(),
            storage_path=os.getenv("ROYALTY_STORAGE_PATH", "royalty_ledger.json"),
            admin_caller=os.getenv("ROYALTY_ADMIN_CALLER") or None,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "console").lower(),
        )

    def validate(self) -> None:
        """Raise ConfigurationError for unusable settings."""
        if self.total_share_units <= 0:
            raise ConfigurationError(
                "total_share_units must be positive",
                action="load_config",
                component="config",
            )
        if self.global_minimum < 0:
            raise ConfigurationError(
                "global_minimum cannot be negative",
                action="load_config",
                component="config",
            )
        if self.lock_timeout <= 0 or self.lock_ttl <= 0:
            raise ConfigurationError(
                "lock_timeout and lock_ttl must be positive",
                action="load_config",
                component="config",
            )
        if self.storage_backend not in STORAGE_BACKENDS:
            raise ConfigurationError(
                f"Unknown storage backend {self.storage_backend!r}; expected one of {STORAGE_BACKENDS}",
                action="load_config",
                component="config",
            )
