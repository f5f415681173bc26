# src/config.py
"""
CastQuest Core Configuration - Environment-based configuration
Worker pool, task deadlines, telemetry sync and decision engine settings.
"""

import os
from dataclasses import dataclass, field
from typing import Optional, List
from functools import lru_cache

from dotenv import load_dotenv

from src.oracle_sync.models import DEFAULT_PARTITIONS

# Load .env file if present
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class Settings:
    """Application settings loaded from environment variables"""

    # ==========================================================================
    # Application Settings
    # ==========================================================================
    ENVIRONMENT: str = field(default_factory=lambda: os.getenv("ENVIRONMENT", "development"))
    LOG_LEVEL: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    LOG_FILE: Optional[str] = field(default_factory=lambda: os.getenv("LOG_FILE") or None)

    # ==========================================================================
    # Worker Pool / Scheduler
    # ==========================================================================
    WORKER_POOL_SIZE: int = field(default_factory=lambda: int(os.getenv("WORKER_POOL_SIZE", "5")))
    TASK_TIMEOUT_SECONDS: float = field(default_factory=lambda: float(os.getenv("TASK_TIMEOUT_SECONDS", "300")))
    TASK_MAX_ATTEMPTS: int = field(default_factory=lambda: int(os.getenv("TASK_MAX_ATTEMPTS", "0")))
    DEFAULT_TASK_PRIORITY: float = field(default_factory=lambda: float(os.getenv("DEFAULT_TASK_PRIORITY", "5")))
    PRIORITY_SCALE: float = field(default_factory=lambda: float(os.getenv("PRIORITY_SCALE", "10")))
    TASK_HISTORY_LIMIT: int = field(default_factory=lambda: int(os.getenv("TASK_HISTORY_LIMIT", "1000")))

    # ==========================================================================
    # Telemetry Sync (Oracle Sync)
    # ==========================================================================
    SYNC_ENABLED: bool = field(default_factory=lambda: _env_bool("SYNC_ENABLED", "true"))
    SYNC_INTERVAL_SECONDS: float = field(default_factory=lambda: float(os.getenv("SYNC_INTERVAL_SECONDS", "5")))
    SYNC_PARTITIONS: List[str] = field(
        default_factory=lambda: _env_list("SYNC_PARTITIONS", ",".join(DEFAULT_PARTITIONS))
    )
    SYNC_ENRICHMENT_MODE: str = field(default_factory=lambda: os.getenv("SYNC_ENRICHMENT_MODE", "deep"))
    SYNC_BATCH_SIZE: int = field(default_factory=lambda: int(os.getenv("SYNC_BATCH_SIZE", "100")))
    TELEMETRY_SOURCE_URL: str = field(default_factory=lambda: os.getenv("TELEMETRY_SOURCE_URL", "http://localhost:8080/telemetry"))
    TELEMETRY_TIMEOUT: float = field(default_factory=lambda: float(os.getenv("TELEMETRY_TIMEOUT", "10")))

    # ==========================================================================
    # Local Storage (synced telemetry)
    # ==========================================================================
    DATABASE_URL: str = field(default_factory=lambda: os.getenv("DATABASE_URL", "sqlite:///./castquest_sync.db"))

    # ==========================================================================
    # Decision Engine
    # ==========================================================================
    BRAIN_HISTORY_LIMIT: int = field(default_factory=lambda: int(os.getenv("BRAIN_HISTORY_LIMIT", "1000")))

    # ==========================================================================
    # Redis (escalation notifications + event forwarding)
    # ==========================================================================
    NOTIFICATIONS_ENABLED: bool = field(default_factory=lambda: _env_bool("NOTIFICATIONS_ENABLED", "false"))
    EVENT_FORWARDING_ENABLED: bool = field(default_factory=lambda: _env_bool("EVENT_FORWARDING_ENABLED", "false"))
    EVENT_BUFFER_SIZE: int = field(default_factory=lambda: int(os.getenv("EVENT_BUFFER_SIZE", "1000")))
    REDIS_HOST: str = field(default_factory=lambda: os.getenv("REDIS_HOST", "localhost"))
    REDIS_PORT: int = field(default_factory=lambda: int(os.getenv("REDIS_PORT", "6379")))
    REDIS_DB: int = field(default_factory=lambda: int(os.getenv("REDIS_DB", "0")))
    REDIS_PASSWORD: Optional[str] = field(default_factory=lambda: os.getenv("REDIS_PASSWORD") or None)

    @property
    def REDIS_URL(self) -> str:
        """Construct Redis URL from components"""
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # ==========================================================================
    # Computed Properties
    # ==========================================================================
    @property
    def task_timeout(self) -> Optional[float]:
        """Per-task deadline in seconds, None when disabled"""
        return self.TASK_TIMEOUT_SECONDS if self.TASK_TIMEOUT_SECONDS > 0 else None

    @property
    def max_attempts(self) -> Optional[int]:
        """Attempt cap before forced escalation, None when unlimited"""
        return self.TASK_MAX_ATTEMPTS if self.TASK_MAX_ATTEMPTS > 0 else None

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    def get_log_config(self) -> dict:
        """Get structured logging configuration"""
        handlers = {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "structured",
                "filters": ["correlation"],
                "stream": "ext://sys.stdout"
            }
        }
        if self.LOG_FILE:
            handlers["file"] = {
                "class": "logging.handlers.RotatingFileHandler",
                "formatter": "structured",
                "filters": ["correlation"],
                "filename": self.LOG_FILE,
                "maxBytes": 100 * 1024 * 1024,
                "backupCount": 5
            }

        return {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "correlation": {
                    "()": "src.observability.correlation.CorrelationIdFilter"
                }
            },
            "formatters": {
                "default": {
                    "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                    "datefmt": "%Y-%m-%dT%H:%M:%S"
                },
                "structured": {
                    "format": "%(asctime)s [%(levelname)s] [corr-id:%(correlation_id)s] %(name)s: %(message)s",
                    "datefmt": "%Y-%m-%dT%H:%M:%S"
                }
            },
            "handlers": handlers,
            "root": {
                "level": self.LOG_LEVEL,
                "handlers": list(handlers)
            }
        }


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
