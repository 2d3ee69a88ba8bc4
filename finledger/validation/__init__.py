"""Validation package."""

from finledger.validation.validator import (
    REQUIRED_FIELDS,
    TransactionValidator,
    to_minor_units,
)

__all__ = ["REQUIRED_FIELDS", "TransactionValidator", "to_minor_units"]
