# content_sync/config.py
"""
Content Sync Configuration Module - Environment-based configuration

Settings holds process-level values (environment, logging, database).
SyncConfig holds the scheduler tuning knobs and is passed explicitly to each
ContentSyncScheduler, so several schedulers can coexist in one process.
"""

import os
import logging.config
from dataclasses import dataclass, field
from typing import Optional
from functools import lru_cache

from dotenv import load_dotenv

from content_sync.errors import ConfigurationError

# Load .env file if present
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


# =============================================================================
# Scheduler Configuration
# =============================================================================

@dataclass
class SyncConfig:
    """Scheduler configuration; every field defaults from the environment"""
    max_concurrent_tasks: int = field(default_factory=lambda: int(os.getenv("SYNC_MAX_CONCURRENT_TASKS", "3")))
    retry_attempts: int = field(default_factory=lambda: int(os.getenv("SYNC_RETRY_ATTEMPTS", "3")))
    retry_delay: float = field(default_factory=lambda: float(os.getenv("SYNC_RETRY_DELAY_SECONDS", "1.0")))
    batch_size: int = field(default_factory=lambda: int(os.getenv("SYNC_BATCH_SIZE", "5")))
    target_timeout: Optional[float] = field(default_factory=lambda: float(os.getenv("SYNC_TARGET_TIMEOUT_SECONDS", "30")))
    retention_hours: float = field(default_factory=lambda: float(os.getenv("SYNC_RETENTION_HOURS", "24")))
    cleanup_interval_seconds: float = field(default_factory=lambda: float(os.getenv("SYNC_CLEANUP_INTERVAL_SECONDS", "3600")))
    batch_interval_seconds: float = field(default_factory=lambda: float(os.getenv("SYNC_BATCH_INTERVAL_SECONDS", "0")))
    retry_permanent_errors: bool = field(default_factory=lambda: _env_bool("SYNC_RETRY_PERMANENT_ERRORS", "false"))

    def __post_init__(self):
        if self.max_concurrent_tasks < 1:
            raise ConfigurationError("max_concurrent_tasks", self.max_concurrent_tasks, "must be >= 1")
        if self.batch_size < 1:
            raise ConfigurationError("batch_size", self.batch_size, "must be >= 1")
        if self.retry_attempts < 0:
            raise ConfigurationError("retry_attempts", self.retry_attempts, "must be >= 0")
        if self.retry_delay < 0:
            raise ConfigurationError("retry_delay", self.retry_delay, "must be >= 0")
        if self.target_timeout is not None and self.target_timeout <= 0:
            # Zero or negative disables the per-target timeout
            self.target_timeout = None
        if self.retention_hours < 0:
            raise ConfigurationError("retention_hours", self.retention_hours, "must be >= 0")


# =============================================================================
# Application Settings
# =============================================================================

class Settings:
    """Application settings loaded from environment variables"""

    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    DEBUG: bool = os.getenv("DEBUG", "true").lower() == "true"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE: Optional[str] = os.getenv("LOG_FILE") or None
    LOG_MAX_SIZE_MB: int = int(os.getenv("LOG_MAX_SIZE_MB", "100"))

    # ==========================================================================
    # Record Store Database
    # ==========================================================================
    @property
    def DATABASE_URL(self) -> str:
        """Get database URL with fallback for development"""
        url = os.getenv("DATABASE_URL")
        if url:
            return url
        return "sqlite:///./content_sync.db"

    DB_POOL_SIZE: int = int(os.getenv("DB_POOL_SIZE", "5"))
    DB_MAX_OVERFLOW: int = int(os.getenv("DB_MAX_OVERFLOW", "10"))

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_testing(self) -> bool:
        return self.ENVIRONMENT.lower() == "testing"

    def sync_config(self, **overrides) -> SyncConfig:
        """Build the scheduler configuration, applying explicit overrides"""
        return SyncConfig(**overrides)

    def get_log_config(self) -> dict:
        """Get structured logging configuration"""
        handlers = {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "structured",
                "filters": ["sync_context"],
                "stream": "ext://sys.stdout"
            }
        }
        if self.LOG_FILE:
            handlers["file"] = {
                "class": "logging.handlers.RotatingFileHandler",
                "formatter": "structured",
                "filters": ["sync_context"],
                "filename": self.LOG_FILE,
                "maxBytes": self.LOG_MAX_SIZE_MB * 1024 * 1024,
                "backupCount": 5
            }

        return {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "sync_context": {
                    "()": "content_sync.middleware.correlation.CorrelationIdFilter"
                }
            },
            "formatters": {
                "default": {
                    "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                    "datefmt": "%Y-%m-%dT%H:%M:%S"
                },
                "structured": {
                    "format": "%(asctime)s [%(levelname)s] [corr-id:%(correlation_id)s] "
                              "[task:%(sync_task_id)s] %(name)s: %(message)s",
                    "datefmt": "%Y-%m-%dT%H:%M:%S"
                }
            },
            "handlers": handlers,
            "loggers": {
                "content_sync": {
                    "level": self.LOG_LEVEL,
                    "handlers": list(handlers),
                    "propagate": False
                }
            }
        }


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


def configure_logging(settings: Optional[Settings] = None):
    """Apply the structured logging configuration"""
    logging.config.dictConfig((settings or get_settings()).get_log_config())
