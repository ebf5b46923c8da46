from decimal import Decimal
from functools import lru_cache
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

ENV_FILE_PATH = Path(".env")


class Settings(BaseModel):
    env: str = Field(default="dev", alias="ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    postgres_db: str = Field(default="tutorhub", alias="POSTGRES_DB")
    postgres_user: str = Field(default="tutorhub", alias="POSTGRES_USER")
    postgres_password: str = Field(default="tutorhub", alias="POSTGRES_PASSWORD")
    postgres_host: str = Field(default="localhost", alias="POSTGRES_HOST")
    postgres_port: int = Field(default=5432, alias="POSTGRES_PORT")

    jwt_secret: str = Field(default="secret", alias="JWT_SECRET")
    jwt_expire_min: int = Field(default=43200, alias="JWT_EXPIRE_MIN")

    platform_commission_rate: Decimal = Field(
        default=Decimal("0.20"), alias="PLATFORM_COMMISSION_RATE"
    )
    referral_reward_amount: Decimal = Field(
        default=Decimal("5.00"), alias="REFERRAL_REWARD_AMOUNT"
    )

    webhook_base_url: str = Field(default="http://localhost:8000", alias="WEBHOOK_BASE_URL")
    gateway_timeout_seconds: float = Field(default=10.0, alias="GATEWAY_TIMEOUT_SECONDS")

    kcb_api_key: str = Field(default="", alias="KCB_API_KEY")
    kcb_api_secret: str = Field(default="", alias="KCB_API_SECRET")
    kcb_account_number: str = Field(default="", alias="KCB_ACCOUNT_NUMBER")
    kcb_route_code: str = Field(default="207", alias="KCB_ROUTE_CODE")
    kcb_transaction_desc: str = Field(default="Language class payment", alias="KCB_TRANSACTION_DESC")
    kcb_base_url: str = Field(
        default="https://api.buni.kcbgroup.com/mm/api/request/1.0.0", alias="KCB_BASE_URL"
    )
    kcb_token_url: str = Field(
        default="https://api.buni.kcbgroup.com/token?grant_type=client_credentials",
        alias="KCB_TOKEN_URL",
    )

    paypal_api_base_url: str = Field(
        default="https://api-m.sandbox.paypal.com", alias="PAYPAL_API_BASE_URL"
    )
    paypal_client_id: str = Field(default="", alias="PAYPAL_CLIENT_ID")
    paypal_client_secret: str = Field(default="", alias="PAYPAL_CLIENT_SECRET")

    exchange_rate_api_key: str = Field(default="", alias="EXCHANGE_RATE_API_KEY")
    exchange_rate_api_url: str = Field(
        default="https://v6.exchangerate-api.com/v6/{api_key}/latest/USD",
        alias="EXCHANGE_RATE_API_URL",
    )
    exchange_rate_ttl_hours: float = Field(default=6, alias="EXCHANGE_RATE_TTL_HOURS")

    brevo_api_key: str = Field(default="", alias="BREVO_API_KEY")
    email_sender: str = Field(default="", alias="EMAIL_SENDER")
    email_sender_name: str = Field(default="", alias="EMAIL_SENDER_NAME")

    scheduler_enabled: bool = Field(default=True, alias="SCHEDULER_ENABLED")
    unattended_grace_minutes: int = Field(default=5, alias="UNATTENDED_GRACE_MINUTES")
    # 0 keeps abandoned reservations until someone reclaims them by hand
    reservation_expiry_minutes: int = Field(default=0, alias="RESERVATION_EXPIRY_MINUTES")

    class Config:
        populate_by_name = True

    @property
    def database_url(self) -> str:
        return (
            f"postgresql+psycopg2://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    load_dotenv(dotenv_path=ENV_FILE_PATH, override=False)
    return Settings(**os.environ)
