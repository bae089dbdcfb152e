"""Shared fixtures: in-process fakes for the identity provider and store."""

import asyncio
from datetime import datetime, timezone

import pytest
from result import Err, Ok, Result

from authflow.auth.orchestrator import AuthOrchestrator
from authflow.auth.schemas import (
    AuthMethod,
    AuthSnapshot,
    LastUsedMethod,
    PhoneCredential,
    Principal,
    ProviderFailure,
)
from authflow.config import Settings

FIXED_NOW = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeIdentityProvider:
    """Identity provider whose callbacks and results are driven by the test."""

    def __init__(self) -> None:
        self.verifications: list[dict] = []
        self.start_error: Exception | None = None

        self.accepted_codes: dict[tuple[str, str], Principal] = {}
        self.submit_failure = ProviderFailure(
            code="invalid-verification-code", message="The SMS code is invalid"
        )
        self.submit_error: Exception | None = None
        self.submit_gate: asyncio.Event | None = None
        self.submitted: list[tuple[str, str]] = []

        self.credential_result: Result[Principal, ProviderFailure] = Ok(
            Principal(id="auto-user", phone_number="+15551234567")
        )
        self.credential_gate: asyncio.Event | None = None
        self.credentials: list[PhoneCredential] = []

        self.federated_result: Result[Principal, ProviderFailure] = Ok(
            Principal(id="google-user", display_name="Test User", email="test@example.com")
        )
        self.federated_error: Exception | None = None
        self.federated_gate: asyncio.Event | None = None

        self.end_session_calls: list[AuthMethod | None] = []
        self.end_session_result: Result[None, ProviderFailure] = Ok(None)
        self.end_session_error: Exception | None = None

        self.session: Principal | None = None
        self.session_error: Exception | None = None

    @property
    def last_listener(self):
        return self.verifications[-1]["listener"]

    async def start_phone_verification(
        self, phone_number, timeout_seconds, listener, resend_handle=None
    ) -> None:
        self.verifications.append(
            {
                "phone_number": phone_number,
                "timeout_seconds": timeout_seconds,
                "listener": listener,
                "resend_handle": resend_handle,
            }
        )
        if self.start_error is not None:
            raise self.start_error

    async def sign_in_with_phone_credential(self, credential):
        self.credentials.append(credential)
        if self.credential_gate is not None:
            await self.credential_gate.wait()
        return self.credential_result

    async def submit_code(self, verification_handle, code):
        self.submitted.append((verification_handle, code))
        if self.submit_gate is not None:
            await self.submit_gate.wait()
        if self.submit_error is not None:
            raise self.submit_error
        principal = self.accepted_codes.get((verification_handle, code))
        if principal is None:
            return Err(self.submit_failure)
        return Ok(principal)

    async def begin_federated_sign_in(self):
        if self.federated_gate is not None:
            await self.federated_gate.wait()
        if self.federated_error is not None:
            raise self.federated_error
        return self.federated_result

    async def end_session(self, method):
        self.end_session_calls.append(method)
        if self.end_session_error is not None:
            raise self.end_session_error
        return self.end_session_result

    async def current_session(self):
        if self.session_error is not None:
            raise self.session_error
        return self.session


class FakeCredentialStore:
    """Credential store that can be told to fail."""

    def __init__(self, record: LastUsedMethod | None = None) -> None:
        self.record = record
        self.fail_load = False
        self.fail_save = False
        self.fail_clear = False
        self.save_gate: asyncio.Event | None = None
        self.cleared = 0

    async def load(self):
        if self.fail_load:
            raise OSError("storage unavailable")
        return self.record

    async def save(self, record):
        if self.save_gate is not None:
            await self.save_gate.wait()
        if self.fail_save:
            raise OSError("storage unavailable")
        self.record = record

    async def clear(self):
        if self.fail_clear:
            raise OSError("storage unavailable")
        self.cleared += 1
        self.record = None


@pytest.fixture
def settings() -> Settings:
    return Settings(phone_verification_timeout_seconds=60, resend_cooldown_seconds=60)


@pytest.fixture
def provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def store() -> FakeCredentialStore:
    return FakeCredentialStore()


@pytest.fixture
def orchestrator(provider, store, settings) -> AuthOrchestrator:
    return AuthOrchestrator(
        provider=provider, store=store, settings=settings, clock=lambda: FIXED_NOW
    )


@pytest.fixture
def snapshots(orchestrator) -> list[AuthSnapshot]:
    """Every snapshot delivered to observers, in order."""
    received: list[AuthSnapshot] = []
    orchestrator.subscribe(received.append)
    return received


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW
