"""
Runtime Settings
================

Loads the engine constants and collaborator configuration once at
process start into an immutable ``EngineSettings`` object that is passed
explicitly into the engines and connectors.

Precedence: environment variables > YAML file > defaults from
``hydro_ai_impact.utils.constants``.

Every field is read from the environment variable of the same name,
matched case-insensitively (``WATER_PER_KWH`` -> ``water_per_kwh``).
"""

import logging
import os
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from hydro_ai_impact.utils.constants import (
    AiImpactConfig,
    ConnectorConfig,
    HistoryConfig,
    IntelligenceConfig,
    LLMConfig,
    USGSEndpoints,
)

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Raised at startup when a configured value is missing or invalid."""


def _positive(default: float):
    return Field(default, gt=0, allow_inf_nan=False)


class EngineSettings(BaseSettings):
    """
    Immutable process configuration.

    The six numeric engine constants must be finite and positive. The
    anomaly multipliers must satisfy moderate < severe so that the severe
    tier stays reachable. Any invalid value raises ConfigurationError.
    """

    model_config = SettingsConfigDict(
        frozen=True,
        extra="forbid",
        case_sensitive=False,
        env_ignore_empty=True,
    )

    # AI-impact converter
    water_per_kwh: float = _positive(AiImpactConfig.WATER_PER_KWH)
    kwh_per_ai_inference: float = _positive(AiImpactConfig.KWH_PER_INFERENCE)
    kwh_per_gpu_training_hour: float = _positive(AiImpactConfig.KWH_PER_GPU_TRAINING_HOUR)

    # Intelligence engine
    anomaly_moderate_multiplier: float = _positive(IntelligenceConfig.ANOMALY_MODERATE_MULTIPLIER)
    anomaly_severe_multiplier: float = _positive(IntelligenceConfig.ANOMALY_SEVERE_MULTIPLIER)
    volatility_high_threshold: float = _positive(IntelligenceConfig.VOLATILITY_HIGH_THRESHOLD)

    # Data source
    usgs_base_url: str = USGSEndpoints.BASE_URL
    cache_ttl_seconds: int = Field(ConnectorConfig.CACHE_TTL_SECONDS, ge=0)
    station_stale_days: int = Field(ConnectorConfig.STATION_STALE_DAYS, ge=0)

    # Narrative generation
    llm_provider: Literal["local", "openai", "anthropic"] = LLMConfig.DEFAULT_PROVIDER
    llm_model: Optional[str] = None
    llm_base_url: Optional[str] = None
    llm_api_key: Optional[str] = None

    # Snapshot persistence
    history_db_path: str = HistoryConfig.DEFAULT_DB_PATH

    def __init__(self, **values: Any):
        try:
            super().__init__(**values)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid settings: {e}") from e

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Environment first: load_settings passes file values as init kwargs
        return env_settings, init_settings

    @model_validator(mode="after")
    def _check_multiplier_order(self) -> "EngineSettings":
        if self.anomaly_moderate_multiplier >= self.anomaly_severe_multiplier:
            raise ConfigurationError(
                "anomaly_moderate_multiplier must be below anomaly_severe_multiplier "
                f"({self.anomaly_moderate_multiplier} >= {self.anomaly_severe_multiplier})"
            )
        return self

    @property
    def effective_llm_model(self) -> str:
        """Configured model, or the provider default."""
        return self.llm_model or LLMConfig.DEFAULT_MODELS[self.llm_provider]


def load_settings(path: Optional[str] = None) -> EngineSettings:
    """
    Load settings from a YAML file and the process environment.

    Args:
        path: Path to a YAML config file. Defaults to the HYDRO_CONFIG_FILE
              env var or "config.yaml". A missing file is not an error.

    Returns:
        Validated, immutable EngineSettings

    Raises:
        ConfigurationError: on an unreadable file, unknown keys, or
                            invalid values
    """
    if path is None:
        path = os.getenv("HYDRO_CONFIG_FILE", "config.yaml")

    config_data: Dict[str, Any] = {}

    if os.path.exists(path):
        try:
            with open(path, "r") as f:
                config_data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to load configuration from {path}: {e}")
        if not isinstance(config_data, dict):
            raise ConfigurationError(f"Configuration file {path} must contain a mapping")
        logger.info(f"Loaded configuration from {path}")

    return EngineSettings(**config_data)
