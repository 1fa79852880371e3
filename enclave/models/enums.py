"""Enums for the enclave - the fixed value sets a safe derivative is drawn from."""
from enum import Enum


class DerivativeCategory(str, Enum):
    """Content categories. Order matters: the derivative indexes into it."""
    ENTERTAINMENT = "entertainment"
    EDUCATION = "education"
    LIFESTYLE = "lifestyle"
    SPORTS = "sports"
    TECHNOLOGY = "technology"


class AgeBracket(str, Enum):
    """Age brackets. Order matters: the derivative indexes into it."""
    TEEN = "13-17"
    YOUNG_ADULT = "18-25"
    ADULT = "26-35"
    MIDDLE_AGED = "36-50"
    SENIOR = "50+"


class SignupMode(str, Enum):
    """Storage mode of the signup register, fixed at startup."""
    IN_MEMORY = "in-memory"
    PERSISTED = "persisted"


class ExternalStatus(str, Enum):
    """Outcome of a best-effort external call."""
    OK = "ok"
    UNAVAILABLE = "unavailable"  # not configured or unreachable
    FAILED = "failed"
