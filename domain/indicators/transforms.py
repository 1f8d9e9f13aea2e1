"""
Transforms for calculated indicators

A transform is a pure function of the resolved dependency values (an
ordered mapping id -> IndicatorValue, in the descriptor's dependency order)
returning a TransformOutput, or a bare float for simple cases.

Built-ins:
- difference, sum: positional arithmetic on current/previous
- net_liquidity: WALCL - TGA - RRP with component breakdown
- credit_stress: 0.6 * high-yield + 0.4 * investment-grade spread
- term_spread: long yield - short yield
- real_rate: policy rate - inflation change %
- momentum_composite: weighted change % (third input inverted, e.g. VIX)
- risk_sentiment: (equity % - volatility %) - 0.5 * (credit % + gold %)
- dollar_basket: weighted inverse EUR/GBP + JPY
"""

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from core.errors import MissingTransformError, RegistrationError
from core.models.indicators import IndicatorValue

logger = logging.getLogger(__name__)


@dataclass
class TransformOutput:
    """Transform result; previous=None means 'no change'"""

    current: float
    previous: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


Transform = Callable[[Mapping[str, IndicatorValue]], "TransformOutput | float"]


def _values(inputs: Mapping[str, IndicatorValue]) -> list[IndicatorValue]:
    return list(inputs.values())


def difference(inputs: Mapping[str, IndicatorValue]) -> TransformOutput:
    """first - second - third - ..."""
    values = _values(inputs)
    head, rest = values[0], values[1:]
    return TransformOutput(
        current=head.current - sum(v.current for v in rest),
        previous=head.previous - sum(v.previous for v in rest),
    )


def total(inputs: Mapping[str, IndicatorValue]) -> TransformOutput:
    """Sum of all inputs"""
    values = _values(inputs)
    return TransformOutput(
        current=sum(v.current for v in values),
        previous=sum(v.previous for v in values),
    )


def net_liquidity(inputs: Mapping[str, IndicatorValue]) -> TransformOutput:
    """Fed balance sheet - Treasury General Account - Reverse Repo"""
    output = difference(inputs)
    output.metadata = {"components": {key: value.current for key, value in inputs.items()}}
    return output


def credit_stress(inputs: Mapping[str, IndicatorValue]) -> TransformOutput:
    """Weighted credit spreads: 60% high yield, 40% investment grade"""
    high_yield, investment_grade = _values(inputs)[:2]
    return TransformOutput(
        current=high_yield.current * 0.6 + investment_grade.current * 0.4,
        previous=high_yield.previous * 0.6 + investment_grade.previous * 0.4,
        metadata={"weights": {"high_yield": 0.6, "investment_grade": 0.4}},
    )


def term_spread(inputs: Mapping[str, IndicatorValue]) -> TransformOutput:
    long_yield, short_yield = _values(inputs)[:2]
    return TransformOutput(
        current=long_yield.current - short_yield.current,
        previous=long_yield.previous - short_yield.previous,
    )


def real_rate(inputs: Mapping[str, IndicatorValue]) -> TransformOutput:
    rate, inflation = _values(inputs)[:2]
    return TransformOutput(
        current=rate.current - inflation.change_percent,
        metadata={"nominal": rate.current, "inflation_change_percent": inflation.change_percent},
    )


MOMENTUM_WEIGHTS = (0.3, 0.2, -0.2, 0.15, 0.15)


def momentum_composite(inputs: Mapping[str, IndicatorValue]) -> TransformOutput:
    """
    Weighted change-percent composite

    Default weights: equities 0.3 / 0.2, volatility inverted -0.2,
    crypto 0.15 / 0.15. Extra inputs beyond the weight list are ignored.
    """
    components = {}
    score = 0.0
    for (key, value), weight in zip(inputs.items(), MOMENTUM_WEIGHTS):
        components[key] = value.change_percent
        score += value.change_percent * weight
    return TransformOutput(current=score, metadata={"components": components})


def risk_sentiment(inputs: Mapping[str, IndicatorValue]) -> TransformOutput:
    values = _values(inputs)
    equities, volatility = values[0], values[1]
    risk_on = equities.change_percent - volatility.change_percent
    risk_off = sum(v.change_percent for v in values[2:4])
    return TransformOutput(
        current=risk_on - risk_off * 0.5,
        metadata={"risk_on": risk_on, "risk_off": risk_off},
    )


def dollar_basket(inputs: Mapping[str, IndicatorValue]) -> TransformOutput:
    eur_usd, gbp_usd, usd_jpy = _values(inputs)[:3]
    if eur_usd.current == 0 or gbp_usd.current == 0:
        raise ValueError("EUR/USD and GBP/USD must be non-zero")

    def basket(eur: float, gbp: float, jpy: float) -> float:
        return (1 / eur) * 0.4 + (1 / gbp) * 0.3 + jpy * 0.3

    previous = None
    if eur_usd.previous and gbp_usd.previous:
        previous = basket(eur_usd.previous, gbp_usd.previous, usd_jpy.previous)
    return TransformOutput(
        current=basket(eur_usd.current, gbp_usd.current, usd_jpy.current),
        previous=previous,
    )


BUILTIN_TRANSFORMS: dict[str, Transform] = {
    "difference": difference,
    "sum": total,
    "net_liquidity": net_liquidity,
    "credit_stress": credit_stress,
    "term_spread": term_spread,
    "real_rate": real_rate,
    "momentum_composite": momentum_composite,
    "risk_sentiment": risk_sentiment,
    "dollar_basket": dollar_basket,
}


class TransformRegistry:
    """
    Named transform functions

    Example:
        >>> transforms = TransformRegistry()
        >>> transforms.register("ratio", lambda v: v["A"].current / v["B"].current)
        >>> transforms.names()
        ['credit_stress', 'difference', ..., 'ratio', ...]
    """

    def __init__(self, include_builtins: bool = True):
        self._transforms: dict[str, Transform] = {}
        if include_builtins:
            self._transforms.update(BUILTIN_TRANSFORMS)

    def register(self, name: str, fn: Transform) -> None:
        """
        Register a transform

        Raises:
            RegistrationError: If fn is not callable
        """
        if not callable(fn):
            raise RegistrationError(f"Transform '{name}' is not callable")
        if name in self._transforms:
            logger.info(f"Replacing transform '{name}'")
        self._transforms[name] = fn

    def get(self, name: str) -> Transform:
        """
        Raises:
            MissingTransformError: If no transform is registered under name
        """
        fn = self._transforms.get(name)
        if fn is None:
            raise MissingTransformError(
                f"Unknown transform: {name}. Available: {', '.join(self.names())}"
            )
        return fn

    def names(self) -> list[str]:
        return sorted(self._transforms)

    def __contains__(self, name: str) -> bool:
        return name in self._transforms
