"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./btc_monitor.db"
    vault_secret: str = ""  # Fixed application secret mixed into every per-user vault key
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:3000"]  # Next.js dev server

    # LN Markets
    lnm_mainnet_url: str = "https://api.lnmarkets.com/v2"
    lnm_testnet_url: str = "https://api.testnet.lnmarkets.com/v2"
    lnm_timeout_seconds: float = 15.0
    lnm_max_retries: int = 3
    lnm_backoff_base_seconds: float = 1.0

    model_config = {"env_prefix": "BTCM_", "env_file": ".env"}


settings = Settings()
