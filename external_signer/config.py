"""Settings loader for the external signer."""
from __future__ import annotations

import re
from typing import List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_XRPL_SERVERS = [
    "wss://xrplcluster.com",
    "wss://s2.ripple.com",
    "wss://s1.ripple.com",
]

REQUIRED_SETTINGS = (
    ("supabase_url", "SUPABASE_URL"),
    ("supabase_service_role_key", "SUPABASE_SERVICE_ROLE_KEY"),
    ("supabase_webhook_url", "SUPABASE_WEBHOOK_URL"),
    ("xrp_hot_wallet_seed", "XRP_HOT_WALLET_SEED"),
)


class ConfigMissing(RuntimeError):
    """Raised when a required environment variable is not set."""


class SignerSettings(BaseSettings):
    supabase_url: Optional[str] = Field(default=None)
    supabase_service_role_key: Optional[str] = Field(default=None)
    supabase_webhook_url: Optional[str] = Field(default=None)
    xrp_hot_wallet_seed: Optional[str] = Field(default=None)

    # Raw comma separated list; see ``ledger_endpoints``.
    xrpl_servers: Optional[str] = Field(default=None)
    xrpl_server: Optional[str] = Field(default=None)

    polling_interval_ms: int = Field(default=5000)
    max_concurrent: int = Field(default=2)
    control_bearer_token: Optional[str] = Field(default=None)

    payout_table: str = Field(default="payout_requests")
    payout_chain: str = Field(default="XRP")
    payout_order_column: str = Field(default="requested_at")
    http_timeout_seconds: float = Field(default=15.0)

    api_host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("polling_interval_ms", "max_concurrent", "port")
    def validate_positive_int(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("Value must be positive")
        return value

    @field_validator("http_timeout_seconds")
    def validate_positive_float(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Value must be positive")
        return value

    @field_validator(
        "supabase_url",
        "supabase_service_role_key",
        "supabase_webhook_url",
        "xrp_hot_wallet_seed",
        "control_bearer_token",
        "xrpl_servers",
        "xrpl_server",
    )
    @classmethod
    def blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        candidate = value.strip()
        return candidate or None

    @field_validator("payout_order_column", "payout_table")
    @classmethod
    def validate_identifier(cls, value: str) -> str:
        candidate = value.strip()
        if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", candidate):
            raise ValueError("must be a plain column/table identifier")
        return candidate

    @model_validator(mode="after")
    def strip_base_url(self) -> "SignerSettings":
        if self.supabase_url:
            self.supabase_url = self.supabase_url.rstrip("/")
        return self

    @property
    def ledger_endpoints(self) -> List[str]:
        """Candidate websocket endpoints, in the order they should be tried."""
        if self.xrpl_servers:
            parts = [part.strip() for part in self.xrpl_servers.split(",")]
            servers = [part for part in parts if part]
            if servers:
                return servers
        if self.xrpl_server:
            return [self.xrpl_server]
        return list(DEFAULT_XRPL_SERVERS)

    @property
    def poll_interval_seconds(self) -> float:
        return self.polling_interval_ms / 1000.0

    def ensure_required(self) -> None:
        for attribute, env_name in REQUIRED_SETTINGS:
            if not getattr(self, attribute, None):
                raise ConfigMissing(f"{env_name} missing")


settings = SignerSettings()
