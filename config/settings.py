"""
Configuration settings for the subscription service
"""
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Local order statuses
ORDER_PENDING = "pending"
ORDER_APPROVED = "approved"
ORDER_CANCELLED = "cancelled"


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,  # Allow both field name and alias
        extra="ignore",
    )

    # Mercado Pago billing configuration
    mercadopago_access_token: Optional[str] = Field(default=None, alias="MERCADOPAGO_ACCESS_TOKEN")
    mercadopago_api_url: str = Field(default="https://api.mercadopago.com", alias="MERCADOPAGO_API_URL")
    mercadopago_webhook_secret: Optional[str] = Field(default=None, alias="MERCADOPAGO_WEBHOOK_SECRET")
    mercadopago_currency: str = Field(default="BRL", alias="MERCADOPAGO_CURRENCY")
    mercadopago_timeout_seconds: float = Field(default=10.0, alias="MERCADOPAGO_TIMEOUT_SECONDS")
    mercadopago_use_sandbox: bool = Field(default=False, alias="MERCADOPAGO_USE_SANDBOX")

    # Infrastructure configuration
    database_url: Optional[str] = Field(default="sqlite+aiosqlite:///./sql_app.db", alias="DATABASE_URL")

    # Public URLs handed to the payment provider
    frontend_url: Optional[str] = Field(default="http://localhost:5173", alias="FRONTEND_URL")
    backend_url: Optional[str] = Field(default="http://localhost:8000", alias="BACKEND_URL")

    # Render.com deployment configuration
    render: Optional[str] = Field(default=None, alias="RENDER")

    # Environment configuration
    env: Optional[str] = Field(default=None, alias="ENV")


# Instantiate settings object
settings = Settings()

# Determine if we're in production mode
IS_PRODUCTION = bool(settings.render) or bool(settings.env and settings.env.lower() == "production")
