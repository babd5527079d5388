"""
Storefront Service — 設定

環境変数は起動時に一度だけ読み込み、Settings オブジェクトとして
各コンポーネントのコンストラクタへ渡す。業務ロジックから os.environ を
直接参照しない。
"""

import os

from pydantic import BaseModel, ConfigDict

_TRUTHY = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUTHY


def _env_int(name: str) -> int | None:
    value = os.environ.get(name, "").strip()
    return int(value) if value else None


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    database_url: str = "sqlite+aiosqlite:///./storefront.db"
    db_echo: bool = False
    init_schema: bool = False

    admin_token: str = "dev-token"

    # Brevo (トランザクションメール)
    brevo_api_key: str | None = None
    brevo_api_url: str = "https://api.brevo.com/v3/smtp/email"
    mail_from: str = "info@example.com"
    mail_name: str = "nursery sera"
    mail_bcc: str | None = None
    mail_timeout: float = 10.0
    template_order: int | None = None
    template_paid: int | None = None
    template_shipdate: int | None = None
    template_shipped: int | None = None

    redis_url: str | None = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """環境変数から設定を組み立てる。"""
        return cls(
            database_url=os.environ.get("DATABASE_URL", cls.model_fields["database_url"].default),
            db_echo=_env_bool("DB_ECHO"),
            init_schema=_env_bool("INIT_SCHEMA"),
            admin_token=os.environ.get("ADMIN_TOKEN", "dev-token"),
            brevo_api_key=os.environ.get("BREVO_API_KEY") or None,
            brevo_api_url=os.environ.get(
                "BREVO_API_URL", cls.model_fields["brevo_api_url"].default
            ),
            mail_from=os.environ.get("MAIL_FROM", "info@example.com"),
            mail_name=os.environ.get("MAIL_NAME", "nursery sera"),
            mail_bcc=os.environ.get("MAIL_BCC") or None,
            mail_timeout=float(os.environ.get("MAIL_TIMEOUT", "10")),
            template_order=_env_int("BREVO_TEMPLATE_ORDER"),
            template_paid=_env_int("BREVO_TEMPLATE_PAID"),
            template_shipdate=_env_int("BREVO_TEMPLATE_SHIPDATE"),
            template_shipped=_env_int("BREVO_TEMPLATE_SHIPPED"),
            redis_url=os.environ.get("REDIS_URL") or None,
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
        )
