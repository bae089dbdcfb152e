"""Error classification for identity provider failures.

Maps raw provider failure codes (Firebase SDK style `invalid-verification-code`,
`auth/` prefixed web codes, or Identity Toolkit REST style `INVALID_CODE`) onto
the closed `AuthErrorKind` taxonomy. Lookups are table-driven and never raise.
"""

import re

from authflow.auth.schemas import AuthErrorKind, ErrorRecord, ProviderFailure

_CODE_TABLE: dict[str, AuthErrorKind] = {
    # Input
    "invalid-phone-number": AuthErrorKind.INVALID_PHONE_NUMBER,
    "missing-phone-number": AuthErrorKind.INVALID_PHONE_NUMBER,
    # One-time code
    "invalid-verification-code": AuthErrorKind.INVALID_CODE,
    "invalid-code": AuthErrorKind.INVALID_CODE,
    "missing-verification-code": AuthErrorKind.INVALID_CODE,
    "missing-code": AuthErrorKind.INVALID_CODE,
    "invalid-credential": AuthErrorKind.INVALID_CODE,
    "session-expired": AuthErrorKind.EXPIRED_CODE,
    "code-expired": AuthErrorKind.EXPIRED_CODE,
    "invalid-verification-id": AuthErrorKind.EXPIRED_CODE,
    "missing-verification-id": AuthErrorKind.EXPIRED_CODE,
    "invalid-session-info": AuthErrorKind.EXPIRED_CODE,
    "missing-session-info": AuthErrorKind.EXPIRED_CODE,
    # Throttling
    "quota-exceeded": AuthErrorKind.QUOTA_EXCEEDED,
    "too-many-requests": AuthErrorKind.RATE_LIMITED,
    "too-many-attempts-try-later": AuthErrorKind.RATE_LIMITED,
    # Transport
    "network-request-failed": AuthErrorKind.NETWORK_FAILURE,
    "timeout": AuthErrorKind.NETWORK_FAILURE,
    # App / project setup
    "app-not-authorized": AuthErrorKind.PROVIDER_MISCONFIGURED,
    "operation-not-allowed": AuthErrorKind.PROVIDER_MISCONFIGURED,
    "invalid-app-credential": AuthErrorKind.PROVIDER_MISCONFIGURED,
    "missing-client-identifier": AuthErrorKind.PROVIDER_MISCONFIGURED,
    "captcha-check-failed": AuthErrorKind.PROVIDER_MISCONFIGURED,
    "invalid-recaptcha-token": AuthErrorKind.PROVIDER_MISCONFIGURED,
    "missing-recaptcha-token": AuthErrorKind.PROVIDER_MISCONFIGURED,
    "invalid-api-key": AuthErrorKind.PROVIDER_MISCONFIGURED,
    "api-key-not-valid": AuthErrorKind.PROVIDER_MISCONFIGURED,
    "unauthorized-domain": AuthErrorKind.PROVIDER_MISCONFIGURED,
    "invalid-idp-response": AuthErrorKind.PROVIDER_MISCONFIGURED,
    # Account linking
    "account-exists-with-different-credential": AuthErrorKind.ACCOUNT_CONFLICT,
    "credential-already-in-use": AuthErrorKind.ACCOUNT_CONFLICT,
    "email-already-in-use": AuthErrorKind.ACCOUNT_CONFLICT,
    "email-exists": AuthErrorKind.ACCOUNT_CONFLICT,
    "federated-user-id-already-linked": AuthErrorKind.ACCOUNT_CONFLICT,
    # Cancellation
    "cancelled": AuthErrorKind.USER_CANCELLED,
    "canceled": AuthErrorKind.USER_CANCELLED,
    "popup-closed-by-user": AuthErrorKind.USER_CANCELLED,
    "web-context-cancelled": AuthErrorKind.USER_CANCELLED,
    "sign-in-cancelled": AuthErrorKind.USER_CANCELLED,
}

USER_MESSAGES: dict[AuthErrorKind, str] = {
    AuthErrorKind.INVALID_PHONE_NUMBER: "The phone number is not valid. Please check the format.",
    AuthErrorKind.INVALID_CODE: "The verification code is invalid. Please enter the correct code.",
    AuthErrorKind.EXPIRED_CODE: "The SMS code has expired. Please request a new one.",
    AuthErrorKind.QUOTA_EXCEEDED: "SMS verification quota exceeded. Please try again later or contact support.",
    AuthErrorKind.RATE_LIMITED: "Too many requests. Please wait a moment and try again.",
    AuthErrorKind.NETWORK_FAILURE: "Network error. Please check your internet connection and try again.",
    AuthErrorKind.PROVIDER_MISCONFIGURED: "This sign-in method is not available right now. Please contact support.",
    AuthErrorKind.ACCOUNT_CONFLICT: "An account already exists with these details using a different sign-in method.",
    AuthErrorKind.USER_CANCELLED: "Sign-in was cancelled.",
    AuthErrorKind.AUTO_VERIFICATION_FAILED: "Automatic verification failed. Please enter the code manually.",
    AuthErrorKind.NO_PENDING_VERIFICATION: "Verification session not found. Please request a new code.",
    AuthErrorKind.UNKNOWN: "An unexpected authentication error occurred. Please try again.",
}

_SEPARATOR = re.compile(r"[:\s]")


def normalize_code(code: str | None) -> str:
    """Reduce a raw provider code to the lower-kebab form used by the table.

    Examples:
        "auth/invalid-verification-code" -> "invalid-verification-code"
        "TOO_MANY_ATTEMPTS_TRY_LATER : retry" -> "too-many-attempts-try-later"
    """
    if not code:
        return ""
    head = _SEPARATOR.split(code.strip(), maxsplit=1)[0]
    head = head.lower()
    if head.startswith("auth/"):
        head = head[len("auth/"):]
    return head.replace("_", "-")


def classify_code(code: str | None) -> AuthErrorKind:
    """Return the error kind for a raw provider code (UNKNOWN if unmapped)."""
    return _CODE_TABLE.get(normalize_code(code), AuthErrorKind.UNKNOWN)


def error_for(kind: AuthErrorKind, raw_message: str = "", code: str = "") -> ErrorRecord:
    """Build an ErrorRecord for a known kind."""
    user_message = USER_MESSAGES[kind]
    if kind is AuthErrorKind.UNKNOWN and code:
        user_message = f"{user_message} (Code: {code})"
    return ErrorRecord(kind=kind, user_message=user_message, raw_message=raw_message)


def classify(failure: ProviderFailure) -> ErrorRecord:
    """Classify a provider failure into a user-facing ErrorRecord."""
    kind = classify_code(failure.code)
    return error_for(kind, raw_message=failure.message or failure.code, code=failure.code)
