"""Application settings and configuration"""

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment and config file"""

    database_type: str = Field("sqlite", env="DATABASE_TYPE")  # sqlite, mysql or postgres
    sqlite_path: str = Field("data/realtime_orders.db", env="SQLITE_PATH")

    mysql_host: str = Field("localhost", env="MYSQL_HOST")
    mysql_port: int = Field(3306, env="MYSQL_PORT")
    mysql_user: str = Field("root", env="MYSQL_USER")
    mysql_password: str = Field("mysql", env="MYSQL_PASSWORD")
    mysql_db: str = Field("realtime_orders", env="MYSQL_DB")

    postgres_host: str = Field("localhost", env="POSTGRES_HOST")
    postgres_port: int = Field(5432, env="POSTGRES_PORT")
    postgres_user: str = Field("postgres", env="POSTGRES_USER")
    postgres_password: str = Field("postgres", env="POSTGRES_PASSWORD")
    postgres_db: str = Field("realtime_orders", env="POSTGRES_DB")

    cdc_poll_interval: float = Field(0.2, env="CDC_POLL_INTERVAL")  # seconds
    cdc_batch_size: int = Field(50, env="CDC_BATCH_SIZE")
    cdc_query_timeout: float = Field(5.0, env="CDC_QUERY_TIMEOUT")
    cdc_retention_count: int = Field(1000, env="CDC_RETENTION_COUNT")
    cdc_retention_probability: float = Field(0.1, env="CDC_RETENTION_PROBABILITY")
    cdc_auto_setup: bool = Field(True, env="CDC_AUTO_SETUP")
    cdc_pool_size: int = Field(5, env="CDC_POOL_SIZE")

    ws_send_queue_size: int = Field(100, env="WS_SEND_QUEUE_SIZE")
    ws_send_timeout: float = Field(5.0, env="WS_SEND_TIMEOUT")

    api_host: str = Field("0.0.0.0", env="API_HOST")
    api_port: int = Field(8000, env="API_PORT")
    api_reload: bool = Field(False, env="API_RELOAD")

    log_level: str = Field("INFO", env="LOG_LEVEL")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"

    @property
    def mysql_params(self) -> Dict[str, Any]:
        return {
            'host': self.mysql_host,
            'port': self.mysql_port,
            'user': self.mysql_user,
            'password': self.mysql_password,
            'database': self.mysql_db
        }

    @property
    def postgres_params(self) -> Dict[str, Any]:
        return {
            'host': self.postgres_host,
            'port': self.postgres_port,
            'user': self.postgres_user,
            'password': self.postgres_password,
            'database': self.postgres_db
        }


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


def load_yaml_config(config_path: str = "config/config.yaml") -> Dict[str, Any]:
    """Load YAML configuration file"""
    config_file = Path(config_path)
    if config_file.exists():
        with open(config_file, "r") as f:
            return yaml.safe_load(f) or {}
    return {}


def build_settings(config_path: str = "config/config.yaml") -> Settings:
    """Settings with YAML values applied over environment defaults"""
    overrides = load_yaml_config(config_path)
    if not overrides:
        return get_settings()
    return Settings(**overrides)
