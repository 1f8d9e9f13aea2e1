"""
Application Settings - Load from YAML configs + .env secrets

Design Philosophy:
- Gateway tunables, fallback chains, indicator registry → YAML files (versioned in git)
- Secrets (API keys, passwords) → .env file (gitignored)

Uses Pydantic for validation and type safety
"""

from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.utils.config import get_nested, load_yaml_safe


class Settings(BaseSettings):
    """
    Application settings

    Architecture:
    - Gateway configs → config/providers/gateway.yaml
    - Indicator registry → config/providers/indicators.yaml
    - Secrets → .env (gitignored)

    Usage:
        from config.settings import get_settings

        settings = get_settings()
        print(settings.CIRCUIT_BREAKER_THRESHOLD)  # From gateway.yaml
        print(settings.FRED_API_KEY)  # From .env
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore extra fields in .env
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Load YAML configs from files (cached at class level)
        if not hasattr(Settings, "_yaml_loaded"):
            Settings._gateway_config = load_yaml_safe("gateway.yaml")
            Settings._indicators_config = load_yaml_safe("indicators.yaml")
            Settings._yaml_loaded = True

    # ============================================
    # ENVIRONMENT (.env only)
    # ============================================
    ENVIRONMENT: str = Field(default="local", description="Environment: local, dev, staging, prod")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

    # ============================================
    # PROVIDER CREDENTIALS (.env only - secrets)
    # ============================================
    FRED_API_KEY: str | None = Field(default=None, description="FRED API key")

    # Overrides cache.backend from gateway.yaml
    CACHE_BACKEND: str | None = Field(default=None, description="Cache backend: memory, redis")

    # ============================================
    # CACHE (from YAML)
    # ============================================
    @property
    def cache_backend(self) -> str:
        """Cache backend (.env override, else gateway.yaml)"""
        backend = self.CACHE_BACKEND or get_nested(self._gateway_config, "cache", "backend", default="memory")
        return backend.lower()

    @property
    def CACHE_DEFAULT_TTL_SECONDS(self) -> float:
        """Default cache TTL for raw indicators"""
        return float(get_nested(self._gateway_config, "cache", "default_ttl_seconds", default=300))

    @property
    def CACHE_MAX_SIZE(self) -> int:
        """Max entries held by the in-memory cache"""
        return int(get_nested(self._gateway_config, "cache", "max_size", default=15000))

    @property
    def CACHE_SWEEP_INTERVAL_SECONDS(self) -> float:
        """Interval of the expired-entry sweep"""
        return float(get_nested(self._gateway_config, "cache", "sweep_interval_seconds", default=30))

    @property
    def CALCULATION_CACHE_TTL_SECONDS(self) -> float:
        """Default cache TTL for calculated indicators"""
        return float(get_nested(self._gateway_config, "calculation", "cache_ttl_seconds", default=300))

    # ============================================
    # RESILIENCE (from YAML)
    # ============================================
    @property
    def RETRY_MAX_ATTEMPTS(self) -> int:
        return int(get_nested(self._gateway_config, "retry", "max_attempts", default=3))

    @property
    def RETRY_BASE_DELAY_SECONDS(self) -> float:
        """Backoff base, doubled per attempt"""
        return float(get_nested(self._gateway_config, "retry", "base_delay_seconds", default=1.0))

    @property
    def CIRCUIT_BREAKER_THRESHOLD(self) -> int:
        """Consecutive transient failures before a breaker opens"""
        return int(get_nested(self._gateway_config, "circuit_breaker", "threshold", default=5))

    @property
    def CIRCUIT_BREAKER_COOLDOWN_SECONDS(self) -> float:
        return float(get_nested(self._gateway_config, "circuit_breaker", "cooldown_seconds", default=60))

    @property
    def CIRCUIT_BREAKER_SCOPE(self) -> str:
        """provider (one breaker per provider) or indicator (per provider:indicator)"""
        return get_nested(self._gateway_config, "circuit_breaker", "scope", default="provider")

    @property
    def REQUEST_TIMEOUT_SECONDS(self) -> float:
        return float(get_nested(self._gateway_config, "request", "timeout_seconds", default=10))

    @property
    def FALLBACK_CONFIDENCE_PENALTY(self) -> float:
        """Multiplier applied to last-known-good values"""
        return float(get_nested(self._gateway_config, "fallback", "confidence_penalty", default=0.8))

    @property
    def HEALTH_LOG_INTERVAL_SECONDS(self) -> float:
        return float(get_nested(self._gateway_config, "health", "log_interval_seconds", default=60))

    # ============================================
    # PROVIDERS (from YAML)
    # ============================================
    @property
    def FALLBACK_CHAINS(self) -> dict[str, list[str]]:
        """Category → ordered provider ids"""
        return self._gateway_config.get("fallback_chains", {})

    @property
    def PROVIDERS(self) -> dict[str, Any]:
        """Raw provider sections from gateway.yaml (validated by config.loader)"""
        return self._gateway_config.get("providers", {})

    @property
    def WARMUP_INDICATORS(self) -> list[str]:
        """Indicators resolved at service start-up"""
        return self._gateway_config.get("warmup", [])

    # ============================================
    # INDICATORS (from YAML)
    # ============================================
    @property
    def INDICATORS(self) -> list[dict[str, Any]]:
        """Raw indicator descriptors from indicators.yaml"""
        return self._indicators_config.get("indicators", [])

    # ============================================
    # REDIS (from YAML + .env)
    # ============================================
    @property
    def REDIS_HOST(self) -> str:
        """Redis host from gateway.yaml"""
        return get_nested(self._gateway_config, "redis", "host", default="redis")

    @property
    def REDIS_PORT(self) -> int:
        """Redis port from gateway.yaml"""
        return int(get_nested(self._gateway_config, "redis", "port", default=6379))

    @property
    def REDIS_DB(self) -> int:
        """Redis database from gateway.yaml"""
        return int(get_nested(self._gateway_config, "redis", "db", default=0))

    @property
    def REDIS_KEY_PREFIX(self) -> str:
        """Namespace for every key this service writes"""
        return get_nested(self._gateway_config, "redis", "key_prefix", default="idl:")

    @property
    def REDIS_LKG_TTL_SECONDS(self) -> int:
        """Retention of last-known-good values"""
        return int(get_nested(self._gateway_config, "redis", "last_known_good_ttl_seconds", default=604800))

    # Redis password from .env (optional secret)
    REDIS_PASSWORD: str | None = Field(default=None)

    @property
    def redis_url(self) -> str:
        """Redis connection URL"""
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"


# Singleton pattern
_settings_instance: Settings | None = None


def get_settings() -> Settings:
    """
    Get application settings (singleton)

    Returns:
        Settings instance

    Example:
        >>> settings = get_settings()
        >>> print(settings.CIRCUIT_BREAKER_COOLDOWN_SECONDS)
        60.0
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
