"""
Configuration loader with YAML support and Pydantic validation
"""

import logging
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, field_validator

from core.models.indicators import IndicatorDescriptor, ProviderId
from core.utils.config import load_yaml

logger = logging.getLogger(__name__)


class RateLimitConfig(BaseModel):
    """Provider sliding-window limit"""

    requests_per_window: int = Field(gt=0)
    window_seconds: float = Field(default=60.0, gt=0)


class ProviderConfig(BaseModel):
    """Single provider configuration"""

    enabled: bool = True
    base_url: str | None = None
    rate_limit: RateLimitConfig | None = None
    inter_chunk_delay_seconds: float = Field(default=0.0, ge=0)

    @field_validator("base_url")
    @classmethod
    def base_url_valid(cls, v):
        if v is not None and not v.startswith(("https://", "http://")):
            raise ValueError("Base URL must start with http:// or https://")
        return v


class GatewayConfig(BaseModel):
    """Provider and fallback chain sections of gateway.yaml"""

    providers: dict[ProviderId, ProviderConfig] = Field(default_factory=dict)
    fallback_chains: dict[str, list[ProviderId]] = Field(default_factory=dict)

    @field_validator("fallback_chains")
    @classmethod
    def chains_not_empty(cls, v):
        for category, chain in v.items():
            if not chain:
                raise ValueError(f"Fallback chain for '{category}' cannot be empty")
            if len(set(chain)) != len(chain):
                raise ValueError(f"Fallback chain for '{category}' lists a provider twice")
        return v


class IndicatorsConfig(BaseModel):
    """indicators.yaml"""

    indicators: list[IndicatorDescriptor] = Field(default_factory=list)


def load_gateway_config(config_path: str | Path = "gateway.yaml") -> GatewayConfig:
    """
    Load and validate gateway.yaml

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValidationError: If config is invalid
    """
    data = load_yaml(config_path)
    try:
        config = GatewayConfig(
            providers=data.get("providers") or {},
            fallback_chains=data.get("fallback_chains") or {},
        )
    except ValidationError as e:
        logger.error(f"Failed to load gateway config: {e}")
        raise

    logger.info(
        f"✓ Loaded {len(config.providers)} providers, {len(config.fallback_chains)} fallback chains"
    )
    return config


def load_provider_configs(config_path: str | Path = "gateway.yaml") -> dict[ProviderId, ProviderConfig]:
    """
    Enabled provider configurations

    Example:
        >>> configs = load_provider_configs()
        >>> configs[ProviderId.FRED].rate_limit.requests_per_window
        120
    """
    providers = load_gateway_config(config_path).providers
    enabled = {provider_id: config for provider_id, config in providers.items() if config.enabled}

    if not enabled:
        raise ValueError("No providers are enabled in configuration")

    logger.info(f"✓ Enabled providers: {', '.join(p.value for p in enabled)}")
    return enabled


def load_fallback_chains(config_path: str | Path = "gateway.yaml") -> dict[str, list[ProviderId]]:
    """
    Category → ordered provider ids

    Example:
        >>> load_fallback_chains()["crypto"]
        [<ProviderId.BINANCE: 'binance'>, <ProviderId.COINBASE: 'coinbase'>]
    """
    return load_gateway_config(config_path).fallback_chains


def load_indicator_descriptors(config_path: str | Path = "indicators.yaml") -> list[IndicatorDescriptor]:
    """
    Load and validate indicators.yaml

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValidationError: If a descriptor is invalid

    Example:
        >>> descriptors = load_indicator_descriptors()
        >>> [d.id for d in descriptors if d.is_calculated][:2]
        ['NET_LIQUIDITY', 'TERM_SPREAD']
    """
    data = load_yaml(config_path)
    try:
        config = IndicatorsConfig(**data)
    except ValidationError as e:
        logger.error(f"Failed to load indicator config: {e}")
        raise

    calculated = sum(1 for d in config.indicators if d.is_calculated)
    logger.info(f"✓ Loaded {len(config.indicators)} indicators ({calculated} calculated)")
    return config.indicators


# Convenience exports
__all__ = [
    "RateLimitConfig",
    "ProviderConfig",
    "GatewayConfig",
    "load_gateway_config",
    "load_provider_configs",
    "load_fallback_chains",
    "load_indicator_descriptors",
]
