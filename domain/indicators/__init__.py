"""
Indicator domain module

Exports:
- IndicatorRegistry: descriptor store with cycle detection
- TransformRegistry, TransformOutput: named transforms for calculated indicators
"""

from domain.indicators.registry import IndicatorRegistry
from domain.indicators.transforms import BUILTIN_TRANSFORMS, TransformOutput, TransformRegistry

__all__ = [
    "IndicatorRegistry",
    "TransformRegistry",
    "TransformOutput",
    "BUILTIN_TRANSFORMS",
]
