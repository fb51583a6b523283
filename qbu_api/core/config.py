# qbu_api/core/config.py
# - Reads env vars from ".env" if available (pydantic-settings).
# - Only server-side secrets and tunables live here; pricing itself comes from the DB.

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


PLACEHOLDER_SECRET_KEY = "CHANGE_THIS_TO_RANDOM_SECRET"


class Settings(BaseSettings):
    APP_NAME: str = "Q-BU Print API"
    APP_VERSION: str = "1.0.16"
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str = "sqlite:///./qbu.db"

    # DEV ONLY: create tables without Alembic
    RUN_CREATE_ALL: bool = False

    FRONTEND_URL: str | None = None
    # カンマ区切りで追加の許可オリジン
    CORS_EXTRA_ORIGINS: str = ""

    # JWT (admin / logged-in customer identification)
    SECRET_KEY: str = PLACEHOLDER_SECRET_KEY
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7

    # チケットコードのハッシュ用 salt（未設定なら SECRET_KEY を使う）
    QBU_TICKET_SALT: str = ""

    # 配送先暗号化キー（32 bytes 推奨: "base64:..." / "hex:..." / 64-hex）
    QBU_SHIPPING_ENC_KEY: str = ""

    # 梱包余白（各辺に加算する mm）
    SIZE_PADDING_MM: float = 20.0

    # print scale clamps
    MAX_SIDE_MM_MIN: float = 10.0
    MAX_SIDE_MM_MAX: float = 300.0
    BLOCK_EDGE_MM_MIN: float = 0.1
    BLOCK_EDGE_MM_MAX: float = 500.0
    WARN_TOO_LARGE_MM: float = 180.0

    # email (Resend)
    RESEND_API_KEY: str = ""
    RESEND_API_URL: str = "https://api.resend.com/emails"
    EMAIL_FROM: str = "Q-BU <noreply@q-bu.com>"
    EMAIL_BCC: str = ""
    EMAIL_TIMEOUT_SECONDS: float = 10.0

    # invoice issuer
    INVOICE_ISSUER_NAME: str = "Q-BU"
    INVOICE_ISSUER_ADDRESS: str = ""
    INVOICE_ISSUER_TEL: str = ""
    INVOICE_ISSUER_EMAIL: str = ""
    INVOICE_BANK_NAME: str = ""
    INVOICE_BANK_BRANCH: str = ""
    INVOICE_ACCOUNT_TYPE: str = ""
    INVOICE_ACCOUNT_NUMBER: str = ""
    INVOICE_ACCOUNT_NAME: str = ""
    INVOICE_PAYMENT_NOTE: str = "（お支払い方法はこのメールに追記して運用できます）"
    INVOICE_DUE_DAYS: int = 7

    # pydantic v2 config
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def ticket_salt(self) -> str:
        return self.QBU_TICKET_SALT or self.SECRET_KEY


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
