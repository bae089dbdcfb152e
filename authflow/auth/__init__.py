"""Authentication module for authflow."""

from authflow.auth.errors import classify, classify_code, error_for
from authflow.auth.orchestrator import AuthOrchestrator
from authflow.auth.schemas import (
    AuthErrorKind,
    AuthMethod,
    AuthSnapshot,
    AuthState,
    ErrorRecord,
    LastUsedMethod,
    PendingPhoneVerification,
    PhoneCredential,
    Principal,
    ProviderFailure,
)

__all__ = [
    "AuthErrorKind",
    "AuthMethod",
    "AuthOrchestrator",
    "AuthSnapshot",
    "AuthState",
    "ErrorRecord",
    "LastUsedMethod",
    "PendingPhoneVerification",
    "PhoneCredential",
    "Principal",
    "ProviderFailure",
    "classify",
    "classify_code",
    "error_for",
]
