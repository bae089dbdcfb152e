"""Identity provider backed by the Firebase Identity Toolkit REST API.

Phone sign-in:
- accounts:sendVerificationCode -> sessionInfo (the verification handle)
- accounts:signInWithPhoneNumber -> user for (sessionInfo, code)

Google sign-in:
- an injected source supplies a Google ID token (None when no account was chosen)
- accounts:signInWithIdp exchanges it for a Firebase user
"""

from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from result import Err, Ok, Result

from authflow.auth.ports import PhoneVerificationListener
from authflow.auth.schemas import AuthMethod, PhoneCredential, Principal, ProviderFailure
from authflow.config import Settings, get_settings
from authflow.utils.logging import get_logger, mask_phone

logger = get_logger(__name__)

GOOGLE_PROVIDER_ID = "google.com"

TokenSource = Callable[[], Awaitable[str | None]]

# Error messages the REST API reports without an upper-snake code
_MESSAGE_CODES = {
    "API key not valid": "invalid-api-key",
}


def parse_error_response(response: httpx.Response) -> ProviderFailure:
    """Turn an Identity Toolkit error body into a ProviderFailure.

    Bodies look like `{"error": {"code": 400, "message": "INVALID_CODE"}}`;
    some messages carry detail after a colon (`TOO_MANY_ATTEMPTS_TRY_LATER : ...`).
    """
    try:
        body = response.json()
    except ValueError:
        body = None

    error = body.get("error") if isinstance(body, dict) else None
    message = error.get("message") if isinstance(error, dict) else None
    if not message:
        return ProviderFailure(
            code=f"http-{response.status_code}",
            message=f"Identity Toolkit returned HTTP {response.status_code}",
        )

    for prefix, code in _MESSAGE_CODES.items():
        if message.startswith(prefix):
            return ProviderFailure(code=code, message=message)

    return ProviderFailure(code=message.split(":", 1)[0].strip(), message=message)


def principal_from_user(data: dict[str, Any]) -> Principal | None:
    """Build a Principal from an Identity Toolkit user or sign-in response.

    Returns None when the response carries no `localId`.
    """
    if not data.get("localId"):
        return None
    return Principal(
        id=data["localId"],
        display_name=data.get("displayName") or None,
        email=data.get("email") or None,
        phone_number=data.get("phoneNumber") or None,
    )


class FirebaseRestIdentityProvider:
    """Identity provider adapter over the Identity Toolkit v1 REST API."""

    def __init__(
        self,
        settings: Settings | None = None,
        google_id_token_source: TokenSource | None = None,
        recaptcha_token_source: TokenSource | None = None,
        google_sign_out: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            settings: Settings override; defaults to `get_settings()`.
            google_id_token_source: Runs the Google account picker and returns
                an ID token, or None when the user chose no account.
            recaptcha_token_source: Supplies a reCAPTCHA token for
                sendVerificationCode when the project enforces it.
            google_sign_out: Clears the Google account selection on sign out.
        """
        self._settings = settings or get_settings()
        self._google_id_token_source = google_id_token_source
        self._recaptcha_token_source = recaptcha_token_source
        self._google_sign_out = google_sign_out
        self._id_token: str | None = None

    @property
    def id_token(self) -> str | None:
        return self._id_token

    async def start_phone_verification(
        self,
        phone_number: str,
        timeout_seconds: int,
        listener: PhoneVerificationListener,
        resend_handle: str | None = None,
    ) -> None:
        """Send an SMS code and report the outcome on `listener`.

        The REST API has no auto-retrieval, so only `code_sent` or `failed`
        is ever delivered; `timeout_seconds` and `resend_handle` are unused.
        """
        payload: dict[str, Any] = {"phoneNumber": phone_number}
        if self._recaptcha_token_source is not None:
            recaptcha_token = await self._recaptcha_token_source()
            if recaptcha_token:
                payload["recaptchaToken"] = recaptcha_token

        result = await self._post("accounts:sendVerificationCode", payload)
        if result.is_err():
            await listener.failed(result.unwrap_err())
            return

        session_info = result.unwrap().get("sessionInfo")
        if not session_info:
            await listener.failed(
                ProviderFailure(code="missing-session-info", message="No sessionInfo returned")
            )
            return

        logger.info(f"Verification code sent to {mask_phone(phone_number)}")
        await listener.code_sent(session_info, None)

    async def submit_code(
        self, verification_handle: str, code: str
    ) -> Result[Principal, ProviderFailure]:
        """Exchange sessionInfo and SMS code for a Firebase user."""
        result = await self._post(
            "accounts:signInWithPhoneNumber",
            {"sessionInfo": verification_handle, "code": code},
        )
        if result.is_err():
            return Err(result.unwrap_err())
        return self._signed_in(result.unwrap())

    async def sign_in_with_phone_credential(
        self, credential: PhoneCredential
    ) -> Result[Principal, ProviderFailure]:
        """Sign in with a phone credential carrying a handle and code."""
        if not credential.verification_handle or not credential.sms_code:
            return Err(
                ProviderFailure(
                    code="invalid-credential",
                    message="Phone credential needs a verification handle and code",
                )
            )
        return await self.submit_code(credential.verification_handle, credential.sms_code)

    async def begin_federated_sign_in(self) -> Result[Principal, ProviderFailure]:
        """Run the Google account picker and exchange its ID token."""
        if self._google_id_token_source is None:
            return Err(
                ProviderFailure(
                    code="operation-not-allowed",
                    message="Google sign-in is not configured",
                )
            )

        try:
            google_id_token = await self._google_id_token_source()
        except Exception as e:
            logger.exception("Google account picker failed")
            return Err(ProviderFailure(code="invalid-idp-response", message=str(e)))

        if not google_id_token:
            return Err(ProviderFailure.cancelled())

        result = await self._post(
            "accounts:signInWithIdp",
            {
                "postBody": f"id_token={google_id_token}&providerId={GOOGLE_PROVIDER_ID}",
                "requestUri": self._settings.federated_request_uri,
                "returnSecureToken": True,
                "returnIdpCredential": True,
            },
        )
        if result.is_err():
            return Err(result.unwrap_err())

        data = result.unwrap()
        if data.get("needConfirmation"):
            return Err(
                ProviderFailure(
                    code="account-exists-with-different-credential",
                    message=f"Account {data.get('email', '')} uses a different sign-in method",
                )
            )
        return self._signed_in(data)

    async def end_session(self, method: AuthMethod | None) -> Result[None, ProviderFailure]:
        """Forget held tokens and sign out of Google for Google sessions."""
        self._id_token = None

        if method is AuthMethod.GOOGLE and self._google_sign_out is not None:
            try:
                await self._google_sign_out()
            except Exception as e:
                return Err(ProviderFailure(code="google-sign-out-failed", message=str(e)))
        return Ok(None)

    async def current_session(self) -> Principal | None:
        """Look up the user behind the held ID token, if any."""
        if not self._id_token:
            return None

        result = await self._post("accounts:lookup", {"idToken": self._id_token})
        if result.is_err():
            logger.warning(f"Session lookup failed: {result.unwrap_err().code}")
            return None

        users = result.unwrap().get("users") or []
        if not users:
            return None
        return principal_from_user(users[0])

    def _signed_in(self, data: dict[str, Any]) -> Result[Principal, ProviderFailure]:
        principal = principal_from_user(data)
        if principal is None:
            logger.warning("Identity Toolkit sign-in response has no localId")
            return Err(
                ProviderFailure(
                    code="invalid-idp-response",
                    message="Sign-in response did not identify a user",
                )
            )
        self._id_token = data.get("idToken")
        return Ok(principal)

    async def _post(
        self, endpoint: str, payload: dict[str, Any]
    ) -> Result[dict[str, Any], ProviderFailure]:
        url = f"{self._settings.identity_toolkit_url}/{endpoint}"
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    url,
                    params={"key": self._settings.firebase_api_key},
                    json=payload,
                    timeout=self._settings.http_timeout_seconds,
                )
        except httpx.HTTPError as e:
            logger.warning(f"Identity Toolkit request {endpoint} failed: {e}")
            return Err(ProviderFailure(code="network-request-failed", message=str(e)))

        if response.status_code != 200:
            failure = parse_error_response(response)
            logger.warning(f"Identity Toolkit {endpoint} returned {failure.code}")
            return Err(failure)

        return Ok(response.json())
