"""Contracts for the external collaborators of the auth orchestrator.

Implementations live elsewhere (`authflow.auth.firebase_rest`,
`authflow.repositories.credential_store`, or test fakes).
"""

from typing import Protocol

from result import Result

from authflow.auth.schemas import (
    AuthMethod,
    LastUsedMethod,
    PhoneCredential,
    Principal,
    ProviderFailure,
)


class PhoneVerificationListener(Protocol):
    """Callbacks for one phone verification request.

    The provider delivers one terminal callback (`auto_completed`, `code_sent`
    or `failed`) and may deliver one `timeout` carrying a fresh handle before
    it. On devices that read the SMS, `auto_completed` may still follow
    `code_sent`, and `timeout` may follow it as well.
    """

    async def auto_completed(self, credential: PhoneCredential) -> None: ...

    async def code_sent(
        self, verification_handle: str, resend_handle: str | None = None
    ) -> None: ...

    async def failed(self, failure: ProviderFailure) -> None: ...

    async def timeout(self, verification_handle: str) -> None: ...


class IdentityProvider(Protocol):
    """Identity provider adapter consumed by the orchestrator."""

    async def start_phone_verification(
        self,
        phone_number: str,
        timeout_seconds: int,
        listener: PhoneVerificationListener,
        resend_handle: str | None = None,
    ) -> None:
        """Ask the provider to send a code; outcomes arrive on `listener`."""
        ...

    async def sign_in_with_phone_credential(
        self, credential: PhoneCredential
    ) -> Result[Principal, ProviderFailure]:
        """Exchange an auto-verified credential for a session."""
        ...

    async def submit_code(
        self, verification_handle: str, code: str
    ) -> Result[Principal, ProviderFailure]:
        """Exchange a verification handle and SMS code for a session."""
        ...

    async def begin_federated_sign_in(self) -> Result[Principal, ProviderFailure]:
        """Run the federated flow.

        Returns `Err(ProviderFailure.cancelled())` when no account was chosen.
        """
        ...

    async def end_session(self, method: AuthMethod | None) -> Result[None, ProviderFailure]: ...

    async def current_session(self) -> Principal | None: ...


class CredentialStore(Protocol):
    """Durable storage for the last-used sign-in method."""

    async def load(self) -> LastUsedMethod | None: ...

    async def save(self, record: LastUsedMethod) -> None: ...

    async def clear(self) -> None: ...
