"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings

from .storage import StorageInterface, create_storage as _create_storage


class LedgerConfig(BaseSettings):
    """Bank ledger configuration"""

    # Database configuration
    database_url: str = "sqlite:///bank_ledger.db"  # memory://, sqlite:///path, postgresql://...
    sqlite_timeout_seconds: float = 5.0

    # Concurrency configuration
    lock_timeout_seconds: float = 10.0
    max_conflict_retries: int = 3

    # Account numbers
    account_number_prefix: str = "TR"
    account_number_length: int = 12

    # Pagination
    default_page_size: int = 20
    max_page_size: int = 100

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Security configuration
    auth_enabled: bool = True
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    class Config:
        env_prefix = "BANK_LEDGER_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = LedgerConfig()


def get_config() -> LedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LedgerConfig:
    """Reload configuration from environment"""
    global config
    config = LedgerConfig()
    return config


def create_storage(cfg: LedgerConfig = None) -> StorageInterface:
    """Build the storage backend named by cfg.database_url"""
    cfg = cfg or get_config()
    return _create_storage(
        cfg.database_url,
        sqlite_timeout=cfg.sqlite_timeout_seconds,
        lock_timeout=cfg.lock_timeout_seconds,
    )
