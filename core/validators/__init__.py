"""
Validators module

Data quality validators for provider quotes
"""

from core.validators.quotes import QuoteValidator

__all__ = ["QuoteValidator"]
