import logging
import logging.config
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = "sqlite:///./bakery_console.db"
    echo_sql: bool = False
    auto_create_tables: bool = False

    log_level: str = "INFO"
    log_file: Optional[str] = None
    log_file_max_bytes: int = 5 * 1024 * 1024
    log_file_backup_count: int = 5

    auth_providers: list[str] = ["google", "github"]
    session_ttl_seconds: int = 3600

    default_route: str = "/products"
    page_limit_max: int = 500

    model_config = SettingsConfigDict(env_file=".env", env_prefix="", case_sensitive=False)


settings = Settings()


def build_logging_config(config: Settings) -> dict:
    handlers: dict = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
            "level": config.log_level,
        },
    }
    if config.log_file:
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "standard",
            "filename": config.log_file,
            "maxBytes": config.log_file_max_bytes,
            "backupCount": config.log_file_backup_count,
            "level": logging.INFO,
            "encoding": "utf-8",
        }
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(module)s.%(funcName)s:%(lineno)d - %(message)s",
            },
        },
        "handlers": handlers,
        "root": {
            "handlers": list(handlers),
            "level": config.log_level,
        },
    }


def configure_logging(config: Settings = settings) -> None:
    logging.config.dictConfig(build_logging_config(config))
