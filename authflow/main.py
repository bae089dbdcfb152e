"""Composition root wiring the orchestrator to its collaborators."""

from authflow.auth.firebase_rest import FirebaseRestIdentityProvider, TokenSource
from authflow.auth.orchestrator import AuthOrchestrator
from authflow.auth.ports import CredentialStore, IdentityProvider
from authflow.config import get_settings
from authflow.repositories.credential_store import JsonFileCredentialStore
from authflow.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


def create_orchestrator(
    provider: IdentityProvider | None = None,
    store: CredentialStore | None = None,
    google_id_token_source: TokenSource | None = None,
) -> AuthOrchestrator:
    """Build an AuthOrchestrator from settings.

    Args:
        provider: Identity provider; defaults to the Firebase REST provider.
        store: Credential store; defaults to the JSON file store at
            `settings.credential_store_path`.
        google_id_token_source: Google account picker used by the default provider.

    Returns:
        A new, uninitialized AuthOrchestrator. Call `initialize()` before use.
    """
    settings = get_settings()
    provider = provider or FirebaseRestIdentityProvider(
        settings=settings, google_id_token_source=google_id_token_source
    )
    store = store or JsonFileCredentialStore(settings.credential_store_path)
    return AuthOrchestrator(provider=provider, store=store, settings=settings)


async def start(
    google_id_token_source: TokenSource | None = None,
) -> AuthOrchestrator:
    """Configure logging, build the orchestrator and resolve the startup state."""
    configure_logging()
    settings = get_settings()
    logger.info(f"Starting {settings.app_name} {settings.app_version}")

    orchestrator = create_orchestrator(google_id_token_source=google_id_token_source)
    await orchestrator.initialize()
    return orchestrator
