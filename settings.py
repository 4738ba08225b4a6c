from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # `.env.prod` takes priority over `.env`
        env_file=(".env", ".env.prod"),
        extra="ignore",
    )

    environment: str = "development"
    port: int = 3000

    # JWT issued by this API
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expiration_hours: int = 24

    # World ID (identity verification + MiniKit payments)
    world_id_app_id: str = "app_staging_doup"
    world_id_action_name: str = "doup_user_verification"
    world_id_api_key: Optional[str] = None
    world_id_client_secret: Optional[str] = None
    world_id_api_base_url: str = "https://developer.worldcoin.org/api/v2"
    world_id_redirect_uri: str = "http://localhost:3000/api/auth/callback"

    # AI chat (OpenAI-compatible endpoint)
    ai_api_key: Optional[str] = None
    ai_api_base_url: str = "https://api.deepseek.com/v1"
    ai_model: str = "deepseek-chat"
    ai_temperature: float = 0.7
    ai_max_tokens: int = 500

    # Front-end redirect base and prefix for generated application links
    frontend_url: str = "http://localhost:3000"
    api_base_url: str = "http://localhost:3000"

    # Wallet login
    nonce_ttl_seconds: int = 300

    # Prices in WLD
    job_link_price: float = 1
    chat_price: float = 1
    require_verified_payment: bool = True
    # Shared secret the payment provider sends in X-Callback-Secret; unset accepts any caller
    payment_callback_secret: Optional[str] = None

    rate_limit: str = "100/15minutes"
    rate_limit_enabled: bool = True

    cors_origins: List[str] = ["*"]

    seed_data_path: Path = BASE_DIR / "data" / "jobs.json"

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
