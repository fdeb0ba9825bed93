from __future__ import annotations

from dataclasses import dataclass
import os


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class RuntimeSettings:
    treasury_account: str
    token_decimals: int
    wallet_service_url: str
    wallet_service_token: str
    wallet_service_timeout_seconds: float
    distribution_max_concurrency: int
    transfer_max_retries: int
    transfer_backoff_seconds: float
    distribution_deadline_seconds: float
    distribution_interval_seconds: int
    cap_to_available: bool
    auto_distribute: bool

    @classmethod
    def from_env(cls) -> "RuntimeSettings":
        return cls(
            treasury_account=os.getenv("TREASURY_ACCOUNT", "treasury"),
            token_decimals=int(os.getenv("TOKEN_DECIMALS", "6")),
            wallet_service_url=os.getenv("WALLET_SERVICE_URL", "http://wallet-service:8080"),
            wallet_service_token=os.getenv("WALLET_SERVICE_TOKEN", ""),
            wallet_service_timeout_seconds=float(os.getenv("WALLET_SERVICE_TIMEOUT_SECONDS", "30")),
            distribution_max_concurrency=int(os.getenv("DISTRIBUTION_MAX_CONCURRENCY", "5")),
            transfer_max_retries=int(os.getenv("TRANSFER_MAX_RETRIES", "2")),
            transfer_backoff_seconds=float(os.getenv("TRANSFER_BACKOFF_SECONDS", "1.0")),
            distribution_deadline_seconds=float(os.getenv("DISTRIBUTION_DEADLINE_SECONDS", "300")),
            distribution_interval_seconds=int(os.getenv("DISTRIBUTION_INTERVAL_SECONDS", "60")),
            cap_to_available=_env_bool("CAP_TO_AVAILABLE", "false"),
            auto_distribute=_env_bool("AUTO_DISTRIBUTE", "true"),
        )
