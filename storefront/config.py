import os
from dotenv import load_dotenv

load_dotenv()


class Settings:
    # Database
    POSTGRES_CONNECTION_STRING: str = os.getenv(
        "POSTGRES_CONNECTION_STRING",
        os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./storefront.db")
    )

    # LiqPay
    LIQPAY_PUBLIC_KEY: str = os.getenv("LIQPAY_PUBLIC_KEY", "")
    LIQPAY_PRIVATE_KEY: str = os.getenv("LIQPAY_PRIVATE_KEY", "")
    LIQPAY_CHECKOUT_URL: str = os.getenv("LIQPAY_CHECKOUT_URL", "https://www.liqpay.ua/api/3/checkout")

    # Site
    SITE_URL: str = os.getenv("SITE_URL", os.getenv("NEXT_PUBLIC_SITE_URL", "https://antiblackout.shop"))

    # Email (Resend)
    RESEND_API_KEY: str = os.getenv("RESEND_API_KEY", "")
    EMAIL_API_URL: str = os.getenv("EMAIL_API_URL", "https://api.resend.com/emails")
    EMAIL_FROM: str = os.getenv("EMAIL_FROM", "AntiBlackout <no-reply@antiblackout.shop>")
    STORE_ORDERS_EMAIL: str = os.getenv("STORE_ORDERS_EMAIL", "antiblackout.orders@gmail.com")
    EMAIL_TIMEOUT: float = float(os.getenv("EMAIL_TIMEOUT", "10"))

    # Admin
    ADMIN_USERNAME: str = os.getenv("ADMIN_USERNAME", "")
    ADMIN_PASSWORD: str = os.getenv("ADMIN_PASSWORD", "")

    # Outbox
    OUTBOX_BATCH_SIZE: int = int(os.getenv("OUTBOX_BATCH_SIZE", "10"))
    OUTBOX_POLL_INTERVAL: float = float(os.getenv("OUTBOX_POLL_INTERVAL", "3"))
    OUTBOX_MAX_ATTEMPTS: int = int(os.getenv("OUTBOX_MAX_ATTEMPTS", "5"))
    OUTBOX_VISIBILITY_TIMEOUT: float = float(os.getenv("OUTBOX_VISIBILITY_TIMEOUT", "300"))

    def __init__(self, **overrides):
        for key, value in overrides.items():
            if not hasattr(type(self), key):
                raise AttributeError(f"Неизвестная настройка: {key}")
            setattr(self, key, value)

    @property
    def DATABASE_URL(self) -> str:
        """Асинхронный URL для приложения"""
        url = self.POSTGRES_CONNECTION_STRING
        if url.startswith("postgres://"):
            return url.replace("postgres://", "postgresql+asyncpg://", 1)
        if url.startswith("postgresql://"):
            return url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return url

    @property
    def SYNC_DATABASE_URL(self) -> str:
        """Синхронный URL для Alembic"""
        return (
            self.DATABASE_URL
            .replace("postgresql+asyncpg://", "postgresql://")
            .replace("sqlite+aiosqlite://", "sqlite://")
        )

    def missing(self) -> list[str]:
        """Список обязательных, но не заданных ключей"""
        required = ("LIQPAY_PUBLIC_KEY", "LIQPAY_PRIVATE_KEY", "RESEND_API_KEY")
        return [key for key in required if not getattr(self, key)]


settings = Settings()
