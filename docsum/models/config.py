"""Configuration management for the document summarization pipeline."""

import os
from pathlib import Path
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

DEFAULT_API_URL = "https://api.openai.com/v1/chat/completions"


class PipelineConfig(BaseModel):
    """Main pipeline configuration."""

    # Summarization endpoint
    api_key: Optional[str] = Field(default=None, description="Bearer credential; None selects demo mode")
    api_url: str = Field(default=DEFAULT_API_URL, description="Chat-completion endpoint")
    economy_model: str = Field(default="gpt-4o-mini", description="Model for short texts on the SHORT tier")
    capable_model: str = Field(default="gpt-4o", description="Model for long texts or richer tiers")
    model_threshold_chars: int = Field(default=15000, description="Text length above which the capable model is used")
    top_p: float = Field(default=0.9, description="Nucleus sampling parameter sent with each request")
    default_tier: str = Field(default="MEDIUM", description="Tier used when none is given")

    # Cache
    cache_enabled: bool = Field(default=True, description="Enable the response cache")
    cache_ttl: float = Field(default=300.0, description="Seconds a cached response stays valid")
    cache_sweep_interval: float = Field(default=60.0, description="Seconds between expiry sweeps")
    cache_summaries: bool = Field(default=True, description="Cache summarization POST responses")

    # Rate limiting (sliding window)
    rate_limit_quota: int = Field(default=20, description="Admitted calls per identifier per window")
    rate_limit_window: float = Field(default=60.0, description="Sliding window length in seconds")
    rate_limit_max_waits: int = Field(default=5, description="Bounded number of waits in blocking mode")

    # Retry configuration
    max_retries: int = Field(default=3, description="Maximum retry attempts per request")
    retry_base_delay: float = Field(default=1.5, description="Base delay for exponential backoff")
    retry_max_delay: float = Field(default=30.0, description="Maximum retry delay")
    retry_jitter_max: float = Field(default=1.0, description="Maximum jitter for retry delay")

    # Timeout configuration
    request_timeout: float = Field(default=45.0, description="Per-attempt network timeout in seconds")
    connect_timeout: float = Field(default=3.0, description="HTTP connect timeout in seconds")
    total_timeout: float = Field(default=300.0, description="Maximum time for one document run")

    # Circuit breaker configuration
    circuit_breaker_failure_threshold: int = Field(default=3, description="Failures before opening circuit")
    circuit_breaker_reset_timeout: float = Field(default=30.0, description="Cooldown before a probe is allowed")
    circuit_breaker_probe_successes: int = Field(default=3, description="Successful probes needed to close")
    circuit_breaker_failure_decay: int = Field(default=1, description="Failure count decrement per success")
    circuit_breaker_monitoring_window: float = Field(default=300.0, description="Outcome log window in seconds")

    # Document limits
    max_file_size: int = Field(default=10 * 1024 * 1024, description="Largest accepted document in bytes")
    min_file_size: int = Field(default=1024, description="Smallest accepted document in bytes")
    max_pages: int = Field(default=500, description="Largest accepted page count")
    max_text_length: int = Field(default=1_000_000, description="Extraction stops past this many characters")

    # Error recovery
    recovery_enabled: bool = Field(default=True, description="Register caller-level recovery strategies")
    recovery_base_delay: float = Field(default=2.0, description="Base delay of the escalating retry strategy")
    recovery_max_delay: float = Field(default=30.0, description="Cap of the escalating retry strategy")
    error_history_size: int = Field(default=100, description="Error records kept for pattern analysis")
    pattern_window: int = Field(default=10, description="Records of one category used for pattern analysis")

    # Processing configuration
    worker_pool_size: int = Field(default=4, description="ThreadPoolExecutor worker count")

    # Logging configuration
    log_level: str = Field(default="INFO", description="Logging level")
    structured_logging: bool = Field(default=True, description="Enable structured logging")

    # Output configuration
    output_directory: str = Field(default="out", description="Output directory for results")
    output_filename: str = Field(default="summary.json", description="Output JSON filename")

    @field_validator('api_url')
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate URL format."""
        if not v.startswith(('http://', 'https://')):
            raise ValueError(f"URL must start with http:// or https://, got: {v}")
        return v

    @field_validator('rate_limit_quota', 'worker_pool_size', 'circuit_breaker_failure_threshold',
                     'circuit_breaker_probe_successes')
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"value must be positive, got: {v}")
        return v

    @field_validator('rate_limit_window', 'request_timeout', 'total_timeout', 'cache_ttl',
                     'cache_sweep_interval')
    @classmethod
    def validate_positive_float(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"value must be positive, got: {v}")
        return v

    @field_validator('max_retries')
    @classmethod
    def validate_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"max_retries must not be negative, got: {v}")
        return v

    @field_validator('default_tier')
    @classmethod
    def validate_tier(cls, v: str) -> str:
        tier = v.upper()
        if tier not in ("SHORT", "MEDIUM", "LONG"):
            raise ValueError(f"default_tier must be SHORT, MEDIUM or LONG, got: {v}")
        return tier

    @property
    def output_path(self) -> Path:
        """Get full output file path."""
        return Path(self.output_directory) / self.output_filename

    @property
    def demo_mode(self) -> bool:
        return not self.api_key

    # Environment variable overrides
    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """Create configuration with environment variable overrides."""
        config = cls()

        env_mappings = {
            "OPENAI_API_KEY": "api_key",
            "DOCSUM_API_KEY": "api_key",
            "DOCSUM_API_URL": "api_url",
            "DOCSUM_TIMEOUT": "total_timeout",
            "DOCSUM_REQUEST_TIMEOUT": "request_timeout",
            "DOCSUM_CONNECT_TIMEOUT": "connect_timeout",
            "DOCSUM_RATE_LIMIT_QUOTA": "rate_limit_quota",
            "DOCSUM_RATE_LIMIT_WINDOW": "rate_limit_window",
            "DOCSUM_MAX_RETRIES": "max_retries",
            "DOCSUM_CACHE_TTL": "cache_ttl",
            "DOCSUM_WORKERS": "worker_pool_size",
            "DOCSUM_LOG_LEVEL": "log_level",
            "DOCSUM_DEFAULT_TIER": "default_tier",
        }

        fields = cls.model_fields
        for env_var, field_name in env_mappings.items():
            if env_var in os.environ:
                value = os.environ[env_var]
                annotation = fields[field_name].annotation
                if annotation == int:
                    setattr(config, field_name, int(value))
                elif annotation == float:
                    setattr(config, field_name, float(value))
                else:
                    setattr(config, field_name, value)

        return config


class ConfigManager:
    """Manages configuration loading with override precedence."""

    def __init__(self, config_file: Optional[Path] = None):
        self.config_file = Path(config_file) if config_file else Path("config/config.yaml")
        self._config: Optional[PipelineConfig] = None

    def load_config(self, cli_overrides: Optional[Dict] = None) -> PipelineConfig:
        """
        Load configuration with override precedence: CLI > ENV > YAML.

        Args:
            cli_overrides: Optional dictionary of CLI flag overrides

        Returns:
            Fully merged PipelineConfig instance

        Raises:
            pydantic.ValidationError: If configuration validation fails
        """
        config_dict = {}

        if self.config_file.exists():
            with open(self.config_file, 'r') as f:
                yaml_config = yaml.safe_load(f)
                if yaml_config:
                    config_dict.update(yaml_config)

        base_config = PipelineConfig(**config_dict)

        env_config = PipelineConfig.from_env()

        merged_dict = base_config.model_dump()
        env_dict = env_config.model_dump()

        # Only override with env values that differ from defaults
        default_dict = PipelineConfig().model_dump()
        for key, value in env_dict.items():
            if value != default_dict[key]:
                merged_dict[key] = value

        if cli_overrides:
            cli_overrides = {k: v for k, v in cli_overrides.items() if v is not None}
            merged_dict.update(cli_overrides)

        self._config = PipelineConfig(**merged_dict)
        return self._config

    @property
    def config(self) -> PipelineConfig:
        """Get the loaded configuration."""
        if self._config is None:
            self._config = self.load_config()
        return self._config
