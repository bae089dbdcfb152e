"""Authentication schemas for authflow.

All records are immutable pydantic models. The orchestrator replaces its
`AuthSnapshot` wholesale on every mutation instead of editing fields in place.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, model_validator


class AuthState(str, Enum):
    """Render-driving authentication state."""

    INITIAL = "initial"
    LOADING = "loading"
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"
    ERROR = "error"


class AuthMethod(str, Enum):
    """Sign-in protocol that produced (or is producing) the session."""

    PHONE = "phone"
    GOOGLE = "google"


class AuthErrorKind(str, Enum):
    """Closed set of user-facing error kinds."""

    INVALID_PHONE_NUMBER = "invalid_phone_number"
    INVALID_CODE = "invalid_code"
    EXPIRED_CODE = "expired_code"
    QUOTA_EXCEEDED = "quota_exceeded"
    RATE_LIMITED = "rate_limited"
    NETWORK_FAILURE = "network_failure"
    PROVIDER_MISCONFIGURED = "provider_misconfigured"
    ACCOUNT_CONFLICT = "account_conflict"
    USER_CANCELLED = "user_cancelled"
    AUTO_VERIFICATION_FAILED = "auto_verification_failed"
    NO_PENDING_VERIFICATION = "no_pending_verification"
    UNKNOWN = "unknown"


class Principal(BaseModel):
    """Authenticated identity returned by the identity provider."""

    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str | None = None
    email: str | None = None
    phone_number: str | None = None


class ProviderFailure(BaseModel):
    """Failure reported by the identity provider, with its raw code."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str = ""

    @classmethod
    def cancelled(cls, message: str = "No account chosen") -> "ProviderFailure":
        return cls(code="cancelled", message=message)


class PhoneCredential(BaseModel):
    """Ready-to-use phone credential delivered by auto-verification."""

    model_config = ConfigDict(frozen=True)

    verification_handle: str | None = None
    sms_code: str | None = None
    token: str | None = None


class PendingPhoneVerification(BaseModel):
    """A phone verification the provider accepted and is waiting on a code."""

    model_config = ConfigDict(frozen=True)

    verification_handle: str
    resend_handle: str | None = None
    phone_number: str
    sent_at: datetime


class LastUsedMethod(BaseModel):
    """Persisted hint of the last method that authenticated successfully."""

    model_config = ConfigDict(frozen=True)

    method: AuthMethod
    phone_number: str | None = None


class ErrorRecord(BaseModel):
    """Classified error shown to the user while the state is ERROR."""

    model_config = ConfigDict(frozen=True)

    kind: AuthErrorKind
    user_message: str
    raw_message: str = ""


class AuthSnapshot(BaseModel):
    """Immutable view of the orchestrator state handed to observers."""

    model_config = ConfigDict(frozen=True)

    auth_state: AuthState = AuthState.INITIAL
    auth_method: AuthMethod | None = None
    error: ErrorRecord | None = None
    phone_number: str | None = None
    principal: Principal | None = None
    pending: PendingPhoneVerification | None = None
    last_used: LastUsedMethod | None = None

    @model_validator(mode="after")
    def check_invariants(self) -> "AuthSnapshot":
        authenticated = self.auth_state is AuthState.AUTHENTICATED
        if authenticated != (self.principal is not None):
            raise ValueError("principal must be present exactly when authenticated")
        if (self.auth_state is AuthState.ERROR) != (self.error is not None):
            raise ValueError("error record must be present exactly in the error state")
        if self.pending is not None and (
            self.auth_method is not AuthMethod.PHONE or self.principal is not None
        ):
            raise ValueError("pending verification requires an unauthenticated phone flow")
        return self

    @property
    def is_authenticated(self) -> bool:
        return self.auth_state is AuthState.AUTHENTICATED

    @property
    def is_loading(self) -> bool:
        return self.auth_state is AuthState.LOADING

    @property
    def has_pending_verification(self) -> bool:
        return self.pending is not None

    @property
    def code_sent_at(self) -> datetime | None:
        return self.pending.sent_at if self.pending else None

    def evolve(self, **changes) -> "AuthSnapshot":
        """Return a validated copy with `changes` applied."""
        return AuthSnapshot(**{**dict(self), **changes})
