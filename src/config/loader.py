# src/config/loader.py
"""
Project configuration loader.
config/config.json is the single source of truth; secrets and hosts are
overridden from environment variables.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


# =============================================================================
# PATHS
# =============================================================================

def get_project_root() -> Path:
    """Returns the project root directory."""
    return Path(__file__).parent.parent.parent


def get_config_path() -> Path:
    """Returns the path of the configuration file."""
    return get_project_root() / "config" / "config.json"


def load_config_json() -> dict[str, Any]:
    """Loads config.json into a dict."""
    config_path = get_config_path()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        return json.load(f)


# =============================================================================
# SETTINGS SECTIONS
# =============================================================================

class SystemSettings(BaseModel):
    """System settings."""
    PROJECT_NAME: str = "food_delivery"
    VERSION: str = "1.0.0"
    DEBUG: bool = True
    ENVIRONMENT: str = "development"
    COMPONENT_MODE: str = "all"


class DeploymentSettings(BaseModel):
    """Hosts and ports of our services and of the collaborators we call."""
    API_PREFIX: str = "/api/v1"

    ORDER_SERVICE_HOST: str = "order_service"
    ORDER_SERVICE_PORT: int = 8101
    DELIVERY_SERVICE_HOST: str = "delivery_service"
    DELIVERY_SERVICE_PORT: int = 8102

    USER_SERVICE_HOST: str = "user_service"
    USER_SERVICE_PORT: int = 8103
    RESTAURANT_SERVICE_HOST: str = "restaurant_service"
    RESTAURANT_SERVICE_PORT: int = 8104
    NOTIFICATION_SERVICE_HOST: str = "notification_service"
    NOTIFICATION_SERVICE_PORT: int = 8105

    def base_url(self, service: str) -> str:
        """Builds ``http://host:port/api/v1`` for a service prefix like ``ORDER``."""
        host = getattr(self, f"{service}_SERVICE_HOST")
        port = getattr(self, f"{service}_SERVICE_PORT")
        return f"http://{host}:{port}{self.API_PREFIX}"

    @property
    def order_service_url(self) -> str:
        return self.base_url("ORDER")

    @property
    def delivery_service_url(self) -> str:
        return self.base_url("DELIVERY")

    @property
    def user_service_url(self) -> str:
        return self.base_url("USER")

    @property
    def restaurant_service_url(self) -> str:
        return self.base_url("RESTAURANT")

    @property
    def notification_service_url(self) -> str:
        return self.base_url("NOTIFICATION")


class LoggingSettings(BaseModel):
    """Logging settings."""
    LOG_LEVEL: str = "DEBUG"
    LOG_TO_FILE: bool = False
    LOG_FILE_PATH: str = "logs/app.log"
    LOG_FORMAT: str = "colored"
    LOG_MAX_BYTES: int = 10485760


class DatabaseSettings(BaseModel):
    """PostgreSQL settings."""
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "food_delivery"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_MIN_POOL_SIZE: int = 5
    DB_MAX_POOL_SIZE: int = 20
    DB_COMMAND_TIMEOUT: int = 60

    @field_validator("DB_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Reads the password from the environment when not configured."""
        if not v:
            return os.getenv("DB_PASSWORD", "")
        return v

    @property
    def dsn(self) -> str:
        """DSN for asyncpg."""
        return (
            f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )


class RabbitMQSettings(BaseModel):
    """RabbitMQ settings."""
    RABBITMQ_ENABLED: bool = True
    RABBITMQ_HOST: str = "localhost"
    RABBITMQ_PORT: int = 5672
    RABBITMQ_USER: str = "guest"
    RABBITMQ_PASSWORD: str = "guest"
    RABBITMQ_VHOST: str = "/"
    RABBITMQ_EXCHANGE: str = "food_delivery.events"
    RABBITMQ_PREFETCH_COUNT: int = 10

    @field_validator("RABBITMQ_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        env_pass = os.getenv("RABBITMQ_PASSWORD", "")
        if env_pass:
            return env_pass
        return v

    @property
    def url(self) -> str:
        """AMQP URL."""
        return (
            f"amqp://{self.RABBITMQ_USER}:{self.RABBITMQ_PASSWORD}"
            f"@{self.RABBITMQ_HOST}:{self.RABBITMQ_PORT}{self.RABBITMQ_VHOST}"
        )


class SecuritySettings(BaseModel):
    """Service-to-service authentication."""
    INTERNAL_SERVICE_TOKEN: str = ""

    @field_validator("INTERNAL_SERVICE_TOKEN", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        if not v:
            return os.getenv("INTERNAL_SERVICE_TOKEN", "")
        return v


class HttpSettings(BaseModel):
    """Timeouts of cross-service calls (seconds)."""
    HTTP_TIMEOUT_SECONDS: float = 5.0
    BEST_EFFORT_TIMEOUT_SECONDS: float = 5.0


class OrderSettings(BaseModel):
    """Order pricing rules."""
    TAX_RATE: float = 0.15
    AMOUNT_TOLERANCE: float = 0.01


class DeliverySettings(BaseModel):
    """Delivery assignment rules."""
    ESTIMATED_DELIVERY_MINUTES: int = 45


class ReconciliationSettings(BaseModel):
    """Periodic sweeps that close best-effort propagation gaps."""
    RECONCILIATION_ENABLED: bool = True
    RECONCILIATION_INTERVAL: int = 60
    RECONCILIATION_BATCH_SIZE: int = 100


# =============================================================================
# MAIN SETTINGS
# =============================================================================

class Settings(BaseSettings):
    """
    Application settings.
    Aggregates every configuration section.
    """
    system: SystemSettings = Field(default_factory=SystemSettings)
    deployment: DeploymentSettings = Field(default_factory=DeploymentSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    rabbitmq: RabbitMQSettings = Field(default_factory=RabbitMQSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    http: HttpSettings = Field(default_factory=HttpSettings)
    orders: OrderSettings = Field(default_factory=OrderSettings)
    delivery: DeliverySettings = Field(default_factory=DeliverySettings)
    reconciliation: ReconciliationSettings = Field(default_factory=ReconciliationSettings)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @classmethod
    def from_dict(cls, config_data: dict[str, Any]) -> "Settings":
        """
        Builds Settings from a flat config dict (the config.json layout).
        Secrets and hosts are overridden from environment variables.
        """
        data = {k: v for k, v in config_data.items() if not k.startswith("_comment_")}

        return cls(
            system=SystemSettings(
                PROJECT_NAME=data.get("PROJECT_NAME", "food_delivery"),
                VERSION=data.get("VERSION", "1.0.0"),
                DEBUG=data.get("DEBUG", True),
                ENVIRONMENT=os.getenv("ENVIRONMENT", data.get("ENVIRONMENT", "development")),
                COMPONENT_MODE=os.getenv("COMPONENT_MODE", data.get("COMPONENT_MODE", "all")),
            ),
            deployment=DeploymentSettings(
                API_PREFIX=data.get("API_PREFIX", "/api/v1"),
                ORDER_SERVICE_HOST=os.getenv("ORDER_SERVICE_HOST", data.get("ORDER_SERVICE_HOST", "order_service")),
                ORDER_SERVICE_PORT=int(os.getenv("ORDER_SERVICE_PORT", data.get("ORDER_SERVICE_PORT", 8101))),
                DELIVERY_SERVICE_HOST=os.getenv("DELIVERY_SERVICE_HOST", data.get("DELIVERY_SERVICE_HOST", "delivery_service")),
                DELIVERY_SERVICE_PORT=int(os.getenv("DELIVERY_SERVICE_PORT", data.get("DELIVERY_SERVICE_PORT", 8102))),
                USER_SERVICE_HOST=os.getenv("USER_SERVICE_HOST", data.get("USER_SERVICE_HOST", "user_service")),
                USER_SERVICE_PORT=int(os.getenv("USER_SERVICE_PORT", data.get("USER_SERVICE_PORT", 8103))),
                RESTAURANT_SERVICE_HOST=os.getenv("RESTAURANT_SERVICE_HOST", data.get("RESTAURANT_SERVICE_HOST", "restaurant_service")),
                RESTAURANT_SERVICE_PORT=int(os.getenv("RESTAURANT_SERVICE_PORT", data.get("RESTAURANT_SERVICE_PORT", 8104))),
                NOTIFICATION_SERVICE_HOST=os.getenv("NOTIFICATION_SERVICE_HOST", data.get("NOTIFICATION_SERVICE_HOST", "notification_service")),
                NOTIFICATION_SERVICE_PORT=int(os.getenv("NOTIFICATION_SERVICE_PORT", data.get("NOTIFICATION_SERVICE_PORT", 8105))),
            ),
            logging=LoggingSettings(
                LOG_LEVEL=data.get("LOG_LEVEL", "DEBUG"),
                LOG_TO_FILE=data.get("LOG_TO_FILE", False),
                LOG_FILE_PATH=data.get("LOG_FILE_PATH", "logs/app.log"),
                LOG_FORMAT=data.get("LOG_FORMAT", "colored"),
                LOG_MAX_BYTES=data.get("LOG_MAX_BYTES", 10485760),
            ),
            database=DatabaseSettings(
                DB_HOST=os.getenv("DB_HOST", data.get("DB_HOST", "localhost")),
                DB_PORT=int(os.getenv("DB_PORT", data.get("DB_PORT", 5432))),
                DB_NAME=os.getenv("DB_NAME", data.get("DB_NAME", "food_delivery")),
                DB_USER=os.getenv("DB_USER", data.get("DB_USER", "postgres")),
                DB_PASSWORD=os.getenv("DB_PASSWORD", data.get("DB_PASSWORD", "")),
                DB_MIN_POOL_SIZE=data.get("DB_MIN_POOL_SIZE", 5),
                DB_MAX_POOL_SIZE=data.get("DB_MAX_POOL_SIZE", 20),
                DB_COMMAND_TIMEOUT=data.get("DB_COMMAND_TIMEOUT", 60),
            ),
            rabbitmq=RabbitMQSettings(
                RABBITMQ_ENABLED=data.get("RABBITMQ_ENABLED", True),
                RABBITMQ_HOST=os.getenv("RABBITMQ_HOST", data.get("RABBITMQ_HOST", "localhost")),
                RABBITMQ_PORT=int(os.getenv("RABBITMQ_PORT", data.get("RABBITMQ_PORT", 5672))),
                RABBITMQ_USER=os.getenv("RABBITMQ_USER", data.get("RABBITMQ_USER", "guest")),
                RABBITMQ_PASSWORD=os.getenv("RABBITMQ_PASSWORD", data.get("RABBITMQ_PASSWORD", "guest")),
                RABBITMQ_VHOST=data.get("RABBITMQ_VHOST", "/"),
                RABBITMQ_EXCHANGE=data.get("RABBITMQ_EXCHANGE", "food_delivery.events"),
                RABBITMQ_PREFETCH_COUNT=data.get("RABBITMQ_PREFETCH_COUNT", 10),
            ),
            security=SecuritySettings(
                INTERNAL_SERVICE_TOKEN=os.getenv("INTERNAL_SERVICE_TOKEN", data.get("INTERNAL_SERVICE_TOKEN", "")),
            ),
            http=HttpSettings(
                HTTP_TIMEOUT_SECONDS=data.get("HTTP_TIMEOUT_SECONDS", 5.0),
                BEST_EFFORT_TIMEOUT_SECONDS=data.get("BEST_EFFORT_TIMEOUT_SECONDS", 5.0),
            ),
            orders=OrderSettings(
                TAX_RATE=data.get("TAX_RATE", 0.15),
                AMOUNT_TOLERANCE=data.get("AMOUNT_TOLERANCE", 0.01),
            ),
            delivery=DeliverySettings(
                ESTIMATED_DELIVERY_MINUTES=data.get("ESTIMATED_DELIVERY_MINUTES", 45),
            ),
            reconciliation=ReconciliationSettings(
                RECONCILIATION_ENABLED=data.get("RECONCILIATION_ENABLED", True),
                RECONCILIATION_INTERVAL=data.get("RECONCILIATION_INTERVAL", 60),
                RECONCILIATION_BATCH_SIZE=data.get("RECONCILIATION_BATCH_SIZE", 100),
            ),
        )

    @classmethod
    def from_config_json(cls) -> "Settings":
        """Creates Settings from config/config.json."""
        return cls.from_dict(load_config_json())


@lru_cache()
def get_settings() -> Settings:
    """
    Returns the cached settings singleton.
    """
    from dotenv import load_dotenv

    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return Settings.from_config_json()


settings = get_settings()
