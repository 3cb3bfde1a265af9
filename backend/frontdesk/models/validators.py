"""Model-level validation utilities for data integrity.

Reusable validators that enforce business rules at the ORM level, so
invalid data is rejected regardless of which route or service writes it.
"""


def positive(key: str, value):
    """Validate that a numeric value is > 0."""
    if value is not None and value <= 0:
        raise ValueError(f"{key} must be positive, got {value}")
    return value


def day_of_week(key: str, value):
    """Validate a weekday index, 0 = Sunday through 6 = Saturday."""
    if value is not None and not 0 <= value <= 6:
        raise ValueError(f"{key} must be between 0 and 6, got {value}")
    return value
