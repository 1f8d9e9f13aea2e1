"""
Calculation engine module

Resolves calculated indicators from their dependencies via registered transforms
"""

from services.calculation_engine.engine import CalculationEngine, calc_cache_key

__all__ = ["CalculationEngine", "calc_cache_key"]
