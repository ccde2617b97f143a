"""Configuration for the audit engine."""

from .settings import (
    AnomalyThresholds,
    AuditSettings,
    MIN_SECRET_LENGTH,
    SecretValidationError,
)

__all__ = [
    'AnomalyThresholds',
    'AuditSettings',
    'MIN_SECRET_LENGTH',
    'SecretValidationError',
]
