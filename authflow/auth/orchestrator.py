"""Auth orchestrator: the state machine behind phone and Google sign-in.

The orchestrator owns a single immutable `AuthSnapshot`. Every operation
computes its changes, swaps the snapshot once and then notifies observers, so
observers never see a half-applied update.

Asynchronous provider outcomes are matched against a generation counter. Each
user-driven operation takes a new generation; callbacks and results carrying
an older generation are dropped without touching state or notifying.
"""

from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import TypeVar

from result import Err, Result

from authflow.auth.errors import classify, error_for
from authflow.auth.ports import CredentialStore, IdentityProvider
from authflow.auth.resend import seconds_until_resend
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
from authflow.config import Settings, get_settings
from authflow.utils.logging import get_logger, mask_phone

logger = get_logger(__name__)

T = TypeVar("T")

Observer = Callable[[AuthSnapshot], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _PhoneVerificationCallbacks:
    """Listener handed to the provider for one phone verification request.

    Bound to the generation that started it. Repeated deliveries of the same
    callback are ignored, as is `failed` after the request already succeeded.
    """

    def __init__(
        self, orchestrator: "AuthOrchestrator", generation: int, phone_number: str
    ) -> None:
        self._orchestrator = orchestrator
        self.generation = generation
        self.phone_number = phone_number
        self._delivered: set[str] = set()
        self.timeout_handle: str | None = None

    @property
    def settled(self) -> bool:
        """Whether a code_sent, auto_completed or failed callback was applied."""
        return bool(self._delivered)

    def _first_delivery(self, event: str) -> bool:
        if event in self._delivered:
            logger.debug(f"Ignoring duplicate {event} callback")
            return False
        self._delivered.add(event)
        return True

    async def auto_completed(self, credential: PhoneCredential) -> None:
        if self._first_delivery("auto_completed"):
            await self._orchestrator._on_auto_completed(self, credential)

    async def code_sent(
        self, verification_handle: str, resend_handle: str | None = None
    ) -> None:
        if self._first_delivery("code_sent"):
            await self._orchestrator._on_code_sent(
                self, verification_handle, resend_handle
            )

    async def failed(self, failure: ProviderFailure) -> None:
        if self._delivered & {"code_sent", "auto_completed"}:
            logger.debug(f"Ignoring failed callback after success: {failure.code}")
            return
        if self._first_delivery("failed"):
            await self._orchestrator._on_verification_failed(self, failure)

    async def timeout(self, verification_handle: str) -> None:
        await self._orchestrator._on_timeout(self, verification_handle)


class AuthOrchestrator:
    """Drives phone and federated sign-in through a shared state machine."""

    def __init__(
        self,
        provider: IdentityProvider,
        store: CredentialStore,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._provider = provider
        self._store = store
        self._clock = clock or _utcnow
        self.phone_verification_timeout_seconds = (
            settings.phone_verification_timeout_seconds
        )
        self.resend_cooldown_seconds = settings.resend_cooldown_seconds

        self._state = AuthSnapshot()
        self._generation = 0
        self._observers: list[Observer] = []

    # ------------------------------------------------------------------
    # Observable surface
    # ------------------------------------------------------------------

    @property
    def state(self) -> AuthSnapshot:
        """Current immutable snapshot."""
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register an observer called with the new snapshot after each mutation.

        Returns:
            A callable that unsubscribes the observer.
        """
        self._observers.append(observer)

        def unsubscribe() -> None:
            self.unsubscribe(observer)

        return unsubscribe

    def unsubscribe(self, observer: Observer) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def seconds_until_resend(self, now: datetime | None = None) -> int:
        """Seconds left before the UI should offer a resend (0 when allowed)."""
        return seconds_until_resend(
            self._state, self.resend_cooldown_seconds, now or self._clock()
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def initialize(self) -> AuthSnapshot:
        """Resolve the startup state from the provider session and stored hint.

        Always leaves the state at AUTHENTICATED or UNAUTHENTICATED, even if
        the provider or the credential store fails.

        Returns:
            The snapshot after resolution.
        """
        generation = self._next_generation()
        principal: Principal | None = None
        try:
            principal = await self._provider.current_session()
        except Exception:
            logger.exception("Failed to read the current provider session")

        last_used = await self._load_last_used()

        if not self._is_current(generation, "startup resolution"):
            return self._state

        if principal is None:
            logger.info("No provider session at startup")
            self._commit(
                auth_state=AuthState.UNAUTHENTICATED,
                auth_method=None,
                phone_number=None,
                principal=None,
                pending=None,
                error=None,
                last_used=last_used,
            )
        else:
            logger.info(f"Restored provider session for user {principal.id}")
            method = last_used.method if last_used else None
            self._commit(
                auth_state=AuthState.AUTHENTICATED,
                auth_method=method,
                phone_number=last_used.phone_number if last_used else None,
                principal=principal,
                pending=None,
                error=None,
                last_used=last_used,
            )
        return self._state

    async def begin_phone_verification(
        self, phone_number: str, resend_handle: str | None = None
    ) -> bool:
        """Ask the provider to send an SMS code to `phone_number`.

        Invalidates any pending verification. The outcome (code sent,
        auto-verified or failed) arrives later as state changes.

        Args:
            phone_number: E.164 formatted phone number.
            resend_handle: Provider resend token from a previous request.

        Returns:
            True if the request was accepted for processing.
        """
        phone_number = (phone_number or "").strip()
        if not phone_number:
            logger.warning("Phone verification requested without a phone number")
            return False

        generation = self._next_generation()
        logger.info(f"Starting phone verification for {mask_phone(phone_number)}")
        self._commit(
            auth_state=AuthState.LOADING,
            auth_method=AuthMethod.PHONE,
            phone_number=phone_number,
            principal=None,
            pending=None,
            error=None,
        )

        listener = _PhoneVerificationCallbacks(self, generation, phone_number)
        try:
            await self._provider.start_phone_verification(
                phone_number,
                self.phone_verification_timeout_seconds,
                listener,
                resend_handle=resend_handle,
            )
        except Exception as e:
            logger.exception("Identity provider raised while starting phone verification")
            if listener.settled:
                return True
            if self._is_current(generation, "phone verification start"):
                self._fail(
                    classify(ProviderFailure(code=type(e).__name__, message=str(e))),
                    auth_method=self._fallback_method(),
                    pending=None,
                )
            return False
        return True

    async def resend(self) -> bool:
        """Request a new code for the stored phone number.

        Not allowed while a request for the number is still in flight.

        Returns:
            True if a new verification request was accepted.
        """
        state = self._state
        if state.is_authenticated:
            logger.warning("Resend requested while already authenticated")
            return False
        if state.is_loading:
            logger.info("Resend ignored: a phone verification request is in flight")
            return False

        pending = state.pending
        phone_number = pending.phone_number if pending else state.phone_number
        if not phone_number:
            logger.warning("Resend requested without a stored phone number")
            return False

        return await self.begin_phone_verification(
            phone_number, resend_handle=pending.resend_handle if pending else None
        )

    async def submit_code(self, code: str) -> bool:
        """Exchange the SMS code for a session.

        Args:
            code: The one-time code the user entered.

        Returns:
            True if the user is now authenticated.
        """
        if self._state.is_authenticated:
            logger.info("Code submission ignored: already authenticated")
            return False

        pending = self._state.pending
        if pending is None:
            logger.warning("Code submitted without a pending verification")
            self._fail(error_for(AuthErrorKind.NO_PENDING_VERIFICATION))
            return False

        generation = self._next_generation()
        logger.info(f"Verifying SMS code for {mask_phone(pending.phone_number)}")
        self._commit(auth_state=AuthState.LOADING, error=None)

        result = await self._call_provider(
            "code exchange",
            lambda: self._provider.submit_code(pending.verification_handle, code),
        )
        if not self._is_current(generation, "code exchange result"):
            return False

        if result.is_err():
            failure = result.unwrap_err()
            logger.warning(f"SMS code verification failed: {failure.code}")
            error = classify(failure)
            expired = error.kind is AuthErrorKind.EXPIRED_CODE
            self._fail(error, pending=None if expired else pending)
            return False

        await self._authenticated(result.unwrap(), AuthMethod.PHONE, pending.phone_number)
        return True

    async def sign_in_with_google(self) -> bool:
        """Run the federated sign-in flow.

        Cancellation by the user returns to UNAUTHENTICATED without an error.

        Returns:
            True if the user is now authenticated.
        """
        generation = self._next_generation()
        logger.info("Starting Google sign-in")
        self._commit(
            auth_state=AuthState.LOADING,
            auth_method=AuthMethod.GOOGLE,
            phone_number=None,
            principal=None,
            pending=None,
            error=None,
        )

        result = await self._call_provider(
            "federated sign-in", self._provider.begin_federated_sign_in
        )
        if not self._is_current(generation, "federated sign-in result"):
            return False

        if result.is_err():
            failure = result.unwrap_err()
            logger.warning(f"Google sign-in did not complete: {failure.code}")
            self._fail(classify(failure), auth_method=None)
            return False

        await self._authenticated(result.unwrap(), AuthMethod.GOOGLE, None)
        return True

    async def sign_out(self) -> None:
        """End the session and reset every piece of session state.

        Provider and store failures are logged; the state always ends at
        UNAUTHENTICATED.
        """
        method = self._state.auth_method
        generation = self._next_generation()
        logger.info("Signing out")
        try:
            self._commit(
                auth_state=AuthState.LOADING,
                principal=None,
                pending=None,
                error=None,
            )
            result = await self._call_provider(
                "sign out", lambda: self._provider.end_session(method)
            )
            if result.is_err():
                logger.warning(
                    f"Provider sign out failed, continuing: {result.unwrap_err().code}"
                )
            await self._clear_last_used()
        finally:
            if self._is_current(generation, "sign out"):
                self._commit(
                    auth_state=AuthState.UNAUTHENTICATED,
                    auth_method=None,
                    phone_number=None,
                    principal=None,
                    pending=None,
                    error=None,
                    last_used=None,
                )

    def reset_error(self) -> None:
        """Clear the error record and return to UNAUTHENTICATED."""
        if self._state.auth_state is AuthState.ERROR:
            self._commit(auth_state=AuthState.UNAUTHENTICATED, error=None)

    def on_provider_session_changed(self, principal: Principal | None) -> None:
        """Apply a session change pushed by the provider.

        A `None` while a session is held signs the user out locally; a
        principal while authenticated refreshes the held identity. Anything
        else is ignored.
        """
        current = self._state.principal
        if current is None:
            logger.debug("Ignoring provider session change without a local session")
            return

        if principal is None:
            logger.info(f"Provider reported no user; dropping session {current.id}")
            self._next_generation()
            self._commit(
                auth_state=AuthState.UNAUTHENTICATED,
                auth_method=None,
                phone_number=None,
                principal=None,
                pending=None,
                error=None,
            )
        elif principal != current:
            self._commit(principal=principal)

    # ------------------------------------------------------------------
    # Phone verification callbacks
    # ------------------------------------------------------------------

    async def _on_code_sent(
        self,
        listener: _PhoneVerificationCallbacks,
        verification_handle: str,
        resend_handle: str | None,
    ) -> None:
        if not self._is_current(listener.generation, "code_sent"):
            return
        logger.info(f"SMS code sent to {mask_phone(listener.phone_number)}")
        self._commit(
            auth_state=AuthState.UNAUTHENTICATED,
            auth_method=AuthMethod.PHONE,
            phone_number=listener.phone_number,
            pending=PendingPhoneVerification(
                verification_handle=verification_handle,
                resend_handle=resend_handle,
                phone_number=listener.phone_number,
                sent_at=self._clock(),
            ),
            error=None,
        )

    async def _on_verification_failed(
        self, listener: _PhoneVerificationCallbacks, failure: ProviderFailure
    ) -> None:
        if not self._is_current(listener.generation, "verification_failed"):
            return
        logger.warning(
            f"Phone verification failed for {mask_phone(listener.phone_number)}: "
            f"{failure.code}"
        )
        self._fail(classify(failure), auth_method=self._fallback_method(), pending=None)

    async def _on_timeout(
        self, listener: _PhoneVerificationCallbacks, verification_handle: str
    ) -> None:
        if not self._is_current(listener.generation, "timeout"):
            return
        pending = self._state.pending
        if pending is None:
            # Fallback handle if auto-verification later fails
            logger.debug("Code auto-retrieval timed out before the code was sent")
            listener.timeout_handle = verification_handle
            return
        if pending.verification_handle == verification_handle:
            return
        logger.info("Code auto-retrieval timed out; refreshing verification handle")
        self._commit(
            pending=pending.model_copy(
                update={"verification_handle": verification_handle}
            )
        )

    async def _on_auto_completed(
        self, listener: _PhoneVerificationCallbacks, credential: PhoneCredential
    ) -> None:
        generation = listener.generation
        if not self._is_current(generation, "auto_completed"):
            return
        logger.info(f"Auto verification completed for {mask_phone(listener.phone_number)}")

        result = await self._call_provider(
            "auto verification",
            lambda: self._provider.sign_in_with_phone_credential(credential),
        )
        if not self._is_current(generation, "auto verification result"):
            return

        if result.is_err():
            failure = result.unwrap_err()
            logger.warning(f"Auto-verification sign-in failed: {failure.code}")
            pending = self._state.pending
            handle = credential.verification_handle or listener.timeout_handle
            if pending is None and handle:
                pending = PendingPhoneVerification(
                    verification_handle=handle,
                    phone_number=listener.phone_number,
                    sent_at=self._clock(),
                )
            self._fail(
                error_for(
                    AuthErrorKind.AUTO_VERIFICATION_FAILED,
                    raw_message=failure.message or failure.code,
                ),
                pending=pending,
            )
            return

        await self._authenticated(result.unwrap(), AuthMethod.PHONE, listener.phone_number)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _next_generation(self) -> int:
        self._generation += 1
        return self._generation

    def _is_current(self, generation: int, event: str) -> bool:
        if generation != self._generation:
            logger.debug(
                f"Discarding stale {event} (generation {generation}, "
                f"current {self._generation})"
            )
            return False
        return True

    def _commit(self, **changes) -> None:
        self._state = self._state.evolve(**changes)
        for observer in list(self._observers):
            try:
                observer(self._state)
            except Exception:
                logger.exception("Auth state observer raised")

    def _fail(self, error: ErrorRecord, **changes) -> None:
        # Cancellation is a normal return to rest, never an error record
        if error.kind is AuthErrorKind.USER_CANCELLED:
            self._commit(auth_state=AuthState.UNAUTHENTICATED, error=None, **changes)
        else:
            self._commit(auth_state=AuthState.ERROR, error=error, **changes)

    def _fallback_method(self) -> AuthMethod | None:
        last_used = self._state.last_used
        return last_used.method if last_used else None

    async def _authenticated(
        self, principal: Principal, method: AuthMethod, phone_number: str | None
    ) -> None:
        # Settles the flow: callbacks still in flight become stale
        generation = self._next_generation()
        record = LastUsedMethod(
            method=method,
            phone_number=phone_number if method is AuthMethod.PHONE else None,
        )
        logger.info(f"Authenticated user {principal.id} via {method.value}")
        self._commit(
            auth_state=AuthState.AUTHENTICATED,
            auth_method=method,
            phone_number=record.phone_number,
            principal=principal,
            pending=None,
            error=None,
            last_used=record,
        )
        await self._save_last_used(record)

        if not self._is_current(generation, "last used method save"):
            # The store must follow whatever a later operation left in the state
            if self._state.last_used is None:
                await self._clear_last_used()
            elif self._state.last_used != record:
                await self._save_last_used(self._state.last_used)

    async def _call_provider(
        self,
        operation: str,
        call: Callable[[], Awaitable[Result[T, ProviderFailure]]],
    ) -> Result[T, ProviderFailure]:
        try:
            return await call()
        except Exception as e:
            logger.exception(f"Identity provider raised during {operation}")
            return Err(ProviderFailure(code=type(e).__name__, message=str(e)))

    async def _load_last_used(self) -> LastUsedMethod | None:
        try:
            return await self._store.load()
        except Exception:
            logger.exception("Failed to load the last used sign-in method")
            return None

    async def _save_last_used(self, record: LastUsedMethod) -> None:
        try:
            await self._store.save(record)
        except Exception:
            logger.exception("Failed to save the last used sign-in method")

    async def _clear_last_used(self) -> None:
        try:
            await self._store.clear()
        except Exception:
            logger.exception("Failed to clear the last used sign-in method")
