"""Configuration management for printwatch."""

from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="PRINTWATCH_",
        extra="ignore",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Log level for the CLI")

    # Buffers
    buffer_capacity: int = Field(default=100, ge=1, description="Samples kept per telemetry channel")
    detection_history_size: int = Field(default=50, ge=1, description="Detections kept for feedback learning")

    # Layer tracking
    layer_height: float = Field(default=0.2, gt=0, description="Layer height in mm")
    max_expected_height: float = Field(default=200.0, gt=0, description="Z height treated as 100% progress (mm)")

    # Evaluation cadence
    layer_cadence_enabled: bool = Field(default=True, description="Evaluate on early and periodic layers")
    early_layer_limit: int = Field(default=5, ge=0, description="Every layer up to this index is evaluated")
    layer_eval_interval: int = Field(default=20, ge=1, description="Evaluate every N-th layer")
    update_eval_interval: int = Field(default=10, ge=0, description="Evaluate every N printer updates (0 disables)")

    # Alerts
    alert_retention_seconds: float = Field(default=3600.0, gt=0, description="Alerts older than this are pruned")
    status_alert_limit: int = Field(default=5, ge=0, description="Alerts included in status snapshots")
    risk_alert_threshold: float = Field(default=0.7, ge=0, le=1, description="Confidence that raises a risk alert")
    moderate_risk_threshold: float = Field(default=0.4, ge=0, le=1, description="Confidence logged as moderate risk")

    # Session lifecycle
    session_restart_policy: Literal["reject", "restart"] = Field(
        default="reject",
        description="What start() does while a session is already active",
    )


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def configure(settings: Optional[Settings]) -> None:
    """Override global settings (None reloads from the environment)."""
    global _settings
    _settings = settings
