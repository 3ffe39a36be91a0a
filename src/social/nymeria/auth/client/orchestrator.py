"""
OAuth session orchestrator.

SessionOrchestrator is the client-side state machine that turns an OAuth authorization-code
flow into an enriched, server-synchronized session:

1. sign_in mints a fresh session id, signs it into the OAuth state and asks the provider for
   the authorization URL.
2. handle_callback completes authorization, recovers the session id from the state, fetches
   the public profile, derives the handle and PDS, and synchronizes the session record.
3. restore resumes a remembered sign-in without a redirect, then reports activity.
4. sign_out revokes, deactivates and forgets, and always ends anonymous.

Only the provider step decides whether a user is authenticated. Profile lookup, DID document
lookup and synchronization are best-effort: their failures are logged and never undo an
authentication the provider granted.

An orchestrator instance is owned by one caller. Driving two flows concurrently on the same
instance is not supported.
"""

from datetime import datetime, timedelta, timezone
import logging
from typing import Awaitable, Callable, Mapping, Optional
from jwcrypto import jwk

from social.nymeria.auth.client.api import SessionApiClient
from social.nymeria.auth.client.config import ClientSettings
from social.nymeria.auth.client.models import (
    AuthPhase,
    AuthState,
    EnhancedSession,
    ExternalSession,
    LocalEnrichment,
    ProfileMetadata,
    generate_state_key,
)
from social.nymeria.auth.client.profile import ProfileClient
from social.nymeria.auth.client.provider import OAuthProvider
from social.nymeria.auth.client.storage import (
    CURRENT_DID_KEY,
    DEVICE_ID_KEY,
    SESSION_ID_KEY,
    STATE_KEY_KEY,
    ClientStateStore,
)
from social.nymeria.auth.errors import UpstreamFailure
from social.nymeria.auth.resolve.did import ResolvedSubject
from social.nymeria.auth.security.identifiers import (
    is_valid_handle,
    new_device_id,
    new_session_id,
)
from social.nymeria.auth.security.sanitize import (
    sanitize_device_id,
    sanitize_session_id,
)

logger = logging.getLogger(__name__)

INVALID_HANDLE = "handle.invalid"

DidResolver = Callable[[str], Awaitable[Optional[ResolvedSubject]]]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def derive_handle(
    profile: Optional[ProfileMetadata],
    resolved: Optional[ResolvedSubject],
    ident: Optional[str],
) -> str:
    """Pick the first valid handle from the profile, the DID document and the sign-in ident."""
    candidates = [
        profile.handle if profile is not None else None,
        resolved.handle if resolved is not None else None,
        ident,
    ]
    for candidate in candidates:
        if candidate is not None and is_valid_handle(candidate):
            return candidate
    return INVALID_HANDLE


def derive_pds(
    external: ExternalSession, resolved: Optional[ResolvedSubject]
) -> Optional[str]:
    if external.pds:
        return external.pds
    if resolved is not None and resolved.pds:
        return resolved.pds
    return None


class SessionOrchestrator:
    def __init__(
        self,
        provider: OAuthProvider,
        api: SessionApiClient,
        profiles: ProfileClient,
        resolver: DidResolver,
        storage: ClientStateStore,
        settings: Optional[ClientSettings] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.provider = provider
        self.api = api
        self.profiles = profiles
        self.resolver = resolver
        self.storage = storage
        self.settings = settings if settings is not None else ClientSettings()
        self._clock = clock

        self.phase = AuthPhase.anonymous
        self.current: Optional[EnhancedSession] = None
        self.device_id = self._load_device_id()
        self.session_id = self._load_session_id() or new_session_id()
        self.state_key = self._load_state_key()

    def _load_device_id(self) -> str:
        device_id = sanitize_device_id(self.storage.get(DEVICE_ID_KEY))
        if device_id is None:
            device_id = new_device_id()
            self.storage.set(DEVICE_ID_KEY, device_id)
        return device_id

    def _load_session_id(self) -> Optional[str]:
        return sanitize_session_id(self.storage.get(SESSION_ID_KEY))

    def _load_state_key(self) -> jwk.JWK:
        serialized = self.storage.get(STATE_KEY_KEY)
        if serialized is not None:
            try:
                return jwk.JWK.from_json(serialized)
            except Exception as e:
                logger.warning("Replacing unreadable state key: %s", type(e).__name__)
        key = generate_state_key()
        self.storage.set(STATE_KEY_KEY, key.export())
        return key

    @property
    def remembered_did(self) -> Optional[str]:
        return self.storage.get(CURRENT_DID_KEY)

    async def sign_in(self, ident: str, redirect: Optional[str] = None) -> str:
        """
        Begin an OAuth sign-in for a handle or DID.

        Returns:
            The provider authorization URL to send the user to

        Raises:
            UpstreamFailure: If the provider cannot begin authorization
        """
        self.phase = AuthPhase.signing_in
        self.session_id = new_session_id()

        state = AuthState(
            ident=ident,
            redirect=redirect or self.settings.default_redirect,
            session_id=self.session_id,
        )
        serialized_state = state.sign(
            self.state_key,
            now=self._clock(),
            lifetime=timedelta(seconds=self.settings.state_lifetime),
        )

        logger.info("Starting sign-in for session %s", self.session_id)

        try:
            authorization_url = await self.provider.authorize(ident, serialized_state)
        except Exception as e:
            logger.warning("Provider authorize failed: %s", type(e).__name__)
            self.phase = AuthPhase.anonymous
            raise UpstreamFailure.provider("authorize") from e

        self.phase = AuthPhase.awaiting_callback
        return authorization_url

    async def handle_callback(
        self, params: Mapping[str, str]
    ) -> Optional[EnhancedSession]:
        """
        Complete a sign-in from the OAuth redirect parameters.

        Returns None when the provider yields no session. A missing or unverifiable state
        does not fail the sign-in; a fresh session id is minted instead and the session
        redirects to the default destination.
        """
        try:
            result = await self.provider.callback(params)
        except Exception as e:
            logger.warning("Provider callback failed: %s", type(e).__name__)
            result = None

        if result is None:
            logger.warning("No session in OAuth callback")
            self.phase = AuthPhase.anonymous
            self.current = None
            return None

        state = AuthState.parse(result.state, self.state_key, now=self._clock())
        session_id = None
        if state is not None:
            session_id = sanitize_session_id(state.session_id)
        if session_id is None:
            session_id = new_session_id()

        if state is not None:
            enhanced = await self._establish(
                result.session, session_id, state.ident, state.redirect
            )
        else:
            enhanced = await self._establish(result.session, session_id, None, None)

        logger.info(
            "Sign-in completed for %s on session %s", enhanced.did, enhanced.session_id
        )
        return enhanced

    async def restore(self, did: Optional[str] = None) -> Optional[EnhancedSession]:
        """
        Resume a sign-in for a DID, or the remembered DID when none is given.

        Returns None when there is nothing to restore or the provider no longer holds a
        session for the DID.
        """
        if did is None:
            did = self.remembered_did
        if did is None:
            return None

        self.phase = AuthPhase.restoring

        try:
            external = await self.provider.restore(did)
        except Exception as e:
            logger.warning("Provider restore failed: %s", type(e).__name__)
            external = None

        if external is None:
            self.phase = AuthPhase.anonymous
            self.current = None
            return None

        session_id = self._load_session_id() or self.session_id
        enhanced = await self._establish(external, session_id, None, None)
        await self._report_activity(session_id)
        return enhanced

    async def sign_out(self) -> None:
        """
        Sign out the current identity.

        Revocation, server-side deactivation and forgetting the local identity are each
        attempted independently. The orchestrator always ends anonymous with a new session
        id, whatever fails along the way.
        """
        self.phase = AuthPhase.signing_out
        did = self.current.did if self.current is not None else self.remembered_did

        try:
            if did is not None:
                try:
                    await self.provider.revoke(did)
                except Exception as e:
                    logger.warning("Provider revoke failed: %s", type(e).__name__)

            try:
                await self.api.deactivate(self.session_id)
            except Exception as e:
                logger.warning("Session deactivate failed: %s", type(e).__name__)

            try:
                self.storage.delete(CURRENT_DID_KEY)
                self.storage.delete(SESSION_ID_KEY)
            except OSError as e:
                logger.warning("Clearing client state failed: %s", e)
        finally:
            self.session_id = new_session_id()
            self.current = None
            self.phase = AuthPhase.anonymous

    async def touch(self) -> bool:
        """Report activity for the current session. Returns False when not authenticated."""
        if self.phase != AuthPhase.authenticated or self.current is None:
            return False
        await self._report_activity(self.current.session_id)
        return True

    async def _establish(
        self,
        external: ExternalSession,
        session_id: str,
        ident: Optional[str],
        redirect: Optional[str],
    ) -> EnhancedSession:
        self.session_id = session_id

        profile = await self._fetch_profile(external.sub)

        resolved: Optional[ResolvedSubject] = None
        if not external.pds or profile is None or not profile.handle:
            resolved = await self._resolve(external.sub)

        enhanced = EnhancedSession(
            external=external,
            local=LocalEnrichment(
                session_id=session_id,
                device_id=self.device_id,
                profile=profile,
                handle=derive_handle(profile, resolved, ident),
                pds=derive_pds(external, resolved),
                redirect=redirect or self.settings.default_redirect,
            ),
        )

        await self._sync(enhanced)

        self.storage.set(CURRENT_DID_KEY, enhanced.did)
        self.storage.set(SESSION_ID_KEY, session_id)
        self.current = enhanced
        self.phase = AuthPhase.authenticated
        return enhanced

    async def _fetch_profile(self, did: str) -> Optional[ProfileMetadata]:
        try:
            return await self.profiles.fetch(did)
        except Exception as e:
            logger.warning("Profile fetch failed: %s", type(e).__name__)
            return None

    async def _resolve(self, did: str) -> Optional[ResolvedSubject]:
        try:
            return await self.resolver(did)
        except Exception as e:
            logger.warning("DID document lookup failed: %s", type(e).__name__)
            return None

    async def _sync(self, enhanced: EnhancedSession) -> None:
        profile = enhanced.profile
        try:
            response = await self.api.sync(
                did=enhanced.did,
                handle=enhanced.handle,
                session_id=enhanced.session_id,
                device_id=enhanced.device_id,
                display_name=profile.display_name if profile is not None else None,
                avatar=profile.avatar if profile is not None else None,
                description=profile.description if profile is not None else None,
                pds=enhanced.pds,
                user_agent=self.settings.user_agent,
                platform=self.settings.platform,
            )
        except Exception as e:
            logger.warning(
                "Session sync failed for %s: %s", enhanced.session_id, type(e).__name__
            )
            return

        if not response.get("sessionRecorded", True):
            logger.warning("Session %s was not recorded", enhanced.session_id)

    async def _report_activity(self, session_id: str) -> None:
        try:
            await self.api.update_activity(session_id, self._clock())
        except Exception as e:
            logger.warning(
                "Activity update failed for %s: %s", session_id, type(e).__name__
            )
