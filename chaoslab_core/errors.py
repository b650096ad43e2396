class ChaosLabError(Exception):
    """Base error for chaoslab."""


class AuthError(ChaosLabError):
    """Operator token missing or mismatched."""


class ValidationError(ChaosLabError):
    """Input validation failure."""
