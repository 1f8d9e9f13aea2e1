"""
Data quality validator for provider quotes

Validates:
- Finite values (no NaN/Inf leaves an adapter)
- Timestamp validation
- Spike detection (logged, not rejected)
"""

import logging
import math
from datetime import UTC, datetime, timedelta

from core.models.indicators import RawQuote

logger = logging.getLogger(__name__)


class QuoteValidator:
    """
    Provider quote sanity checks

    Values may legitimately be zero or negative (spreads, real rates), so
    only finiteness is enforced on price. A quote that fails validation is
    treated by the gateway as a permanent error for that provider.
    """

    def __init__(self, spike_threshold_pct: float = 50.0, max_clock_skew_seconds: float = 5.0):
        """
        Args:
            spike_threshold_pct: |price vs previous_close| change that is logged as a spike
            max_clock_skew_seconds: Tolerance for timestamps in the future
        """
        self.spike_threshold_pct = spike_threshold_pct
        self.max_clock_skew = timedelta(seconds=max_clock_skew_seconds)
        self.spike_count = 0
        self.invalid_count = 0

    def validate_quote(self, quote: RawQuote) -> tuple[bool, str | None]:
        """
        Validate a RawQuote

        Returns:
            (is_valid, error_message)

        Example:
            >>> validator = QuoteValidator()
            >>> ok, error = validator.validate_quote(quote)
            >>> if not ok:
            ...     logger.error(f"Invalid quote: {error}")
        """
        if not math.isfinite(quote.price):
            self.invalid_count += 1
            return False, f"Non-finite price: {quote.price}"

        if quote.previous_close is not None and not math.isfinite(quote.previous_close):
            self.invalid_count += 1
            return False, f"Non-finite previous close: {quote.previous_close}"

        if quote.timestamp_ms <= 0:
            self.invalid_count += 1
            return False, f"Invalid timestamp: {quote.timestamp_ms}"

        now = datetime.now(UTC)
        if quote.timestamp > now + self.max_clock_skew:
            self.invalid_count += 1
            return False, f"Future timestamp: {quote.timestamp} (now: {now})"

        if quote.previous_close:
            change_pct = abs((quote.price - quote.previous_close) / quote.previous_close * 100)
            if change_pct > self.spike_threshold_pct:
                self.spike_count += 1
                logger.warning(
                    f"⚠️ Spike: {quote.symbol} {change_pct:.2f}% "
                    f"({quote.previous_close} → {quote.price})"
                )
                # Don't reject - could be a real market event

        return True, None

    def get_stats(self) -> dict[str, int]:
        return {"spike_count": self.spike_count, "invalid_count": self.invalid_count}
