"""
Indicator Service - Indicator data layer process

Long-running process that:
1. Builds the gateway / calculation engine object graph from config
2. Warms configured indicators
3. Logs health and sweeps the cache periodically
"""

from services.indicator_service.health import HealthReporter

__all__ = ["HealthReporter"]
