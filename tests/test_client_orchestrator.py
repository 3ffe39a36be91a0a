"""
Tests for social.nymeria.auth.client.orchestrator

Exercises the sign-in, callback, restore and sign-out flows with a scripted identity
provider and mocked session API, profile and DID lookups.
"""

import asyncio
import pytest
from unittest.mock import AsyncMock

from social.nymeria.auth.client.config import ClientSettings
from social.nymeria.auth.client.models import (
    AuthPhase,
    AuthState,
    ExternalSession,
    ProfileMetadata,
)
from social.nymeria.auth.client.orchestrator import (
    INVALID_HANDLE,
    SessionOrchestrator,
    derive_handle,
    derive_pds,
)
from social.nymeria.auth.client.storage import (
    CURRENT_DID_KEY,
    DEVICE_ID_KEY,
    SESSION_ID_KEY,
    STATE_KEY_KEY,
    MemoryClientStateStore,
)
from social.nymeria.auth.errors import NotFound, UpstreamFailure
from social.nymeria.auth.resolve.did import ResolvedSubject
from social.nymeria.auth.security.sanitize import (
    sanitize_device_id,
    sanitize_session_id,
)
from tests.test_helpers import FixedClock, ScriptedProvider


def make_orchestrator(
    provider=None, storage=None, profile=None, resolved=None, default_redirect=None
):
    provider = provider or ScriptedProvider()
    api = AsyncMock()
    api.sync.return_value = {"success": True, "sessionRecorded": True}
    api.update_activity.return_value = {"success": True}
    api.deactivate.return_value = None
    profiles = AsyncMock()
    profiles.fetch.return_value = profile
    resolver = AsyncMock(return_value=resolved)

    orchestrator = SessionOrchestrator(
        provider=provider,
        api=api,
        profiles=profiles,
        resolver=resolver,
        storage=storage if storage is not None else MemoryClientStateStore(),
        settings=ClientSettings(
            user_agent="pytest", platform="test", default_redirect=default_redirect
        ),
        clock=FixedClock(),
    )
    return orchestrator, provider, api, profiles, resolver


class TestDerivation:
    """Test suite for derive_handle and derive_pds."""

    def test_profile_handle_first(self):
        profile = ProfileMetadata(handle="alice.bsky.social")
        resolved = ResolvedSubject(did="did:plc:abc123", handle="alice.example", pds=None)
        assert derive_handle(profile, resolved, "alice.ident") == "alice.bsky.social"

    def test_document_handle_second(self):
        profile = ProfileMetadata(handle=None)
        resolved = ResolvedSubject(did="did:plc:abc123", handle="alice.example", pds=None)
        assert derive_handle(profile, resolved, "alice.ident") == "alice.example"

    def test_ident_third(self):
        assert derive_handle(None, None, "alice.ident") == "alice.ident"

    def test_invalid_candidates_skipped(self):
        profile = ProfileMetadata(handle="not a handle")
        assert derive_handle(profile, None, "did:plc:abc123") == INVALID_HANDLE

    def test_pds_from_session_first(self):
        external = ExternalSession(sub="did:plc:abc123", pds="https://a.example/")
        resolved = ResolvedSubject(did="did:plc:abc123", handle=None, pds="https://b.example/")
        assert derive_pds(external, resolved) == "https://a.example/"

    def test_pds_from_document(self):
        external = ExternalSession(sub="did:plc:abc123")
        resolved = ResolvedSubject(did="did:plc:abc123", handle=None, pds="https://b.example/")
        assert derive_pds(external, resolved) == "https://b.example/"
        assert derive_pds(external, None) is None


class TestOrchestratorInit:
    """Test suite for orchestrator construction."""

    def test_mints_and_persists_device_id(self):
        storage = MemoryClientStateStore()
        orchestrator, *_ = make_orchestrator(storage=storage)

        assert orchestrator.phase == AuthPhase.anonymous
        assert sanitize_device_id(orchestrator.device_id) is not None
        assert storage.values[DEVICE_ID_KEY] == orchestrator.device_id
        assert STATE_KEY_KEY in storage.values

    def test_reuses_stored_values(self):
        storage = MemoryClientStateStore(
            {DEVICE_ID_KEY: "dev_known", SESSION_ID_KEY: "sess_known"}
        )
        orchestrator, *_ = make_orchestrator(storage=storage)

        assert orchestrator.device_id == "dev_known"
        assert orchestrator.session_id == "sess_known"

    def test_replaces_malformed_stored_values(self):
        storage = MemoryClientStateStore(
            {DEVICE_ID_KEY: "<script>", SESSION_ID_KEY: "garbage", STATE_KEY_KEY: "{"}
        )
        orchestrator, *_ = make_orchestrator(storage=storage)

        assert orchestrator.device_id != "<script>"
        assert sanitize_device_id(orchestrator.device_id) is not None
        assert sanitize_session_id(orchestrator.session_id) is not None
        assert storage.values[STATE_KEY_KEY] != "{"

    def test_state_key_is_stable_across_instances(self):
        storage = MemoryClientStateStore()
        first, *_ = make_orchestrator(storage=storage)
        second, *_ = make_orchestrator(storage=storage)

        assert first.state_key.export() == second.state_key.export()


class TestSignInAndCallback:
    """Test suite for the sign-in and callback flow."""

    async def test_sign_in_carries_session_id_in_state(self):
        orchestrator, provider, *_ = make_orchestrator()

        url = await orchestrator.sign_in("alice.example", redirect="/posts/1")

        assert url.startswith("https://")
        assert orchestrator.phase == AuthPhase.awaiting_callback
        state = AuthState.parse(
            provider.authorized[-1]["state"],
            orchestrator.state_key,
            now=orchestrator._clock(),
        )
        assert state.ident == "alice.example"
        assert state.redirect == "/posts/1"
        assert state.session_id == orchestrator.session_id

    async def test_sign_in_mints_new_session_id(self):
        storage = MemoryClientStateStore({SESSION_ID_KEY: "sess_previous"})
        orchestrator, *_ = make_orchestrator(storage=storage)

        await orchestrator.sign_in("alice.example")

        assert orchestrator.session_id != "sess_previous"

    async def test_sign_in_provider_failure(self):
        provider = ScriptedProvider()
        provider.fail_authorize = True
        orchestrator, *_ = make_orchestrator(provider=provider)

        with pytest.raises(UpstreamFailure):
            await orchestrator.sign_in("alice.example")

        assert orchestrator.phase == AuthPhase.anonymous

    async def test_callback_recovers_session_id_from_state(self):
        """Test the session id signed into the state is the one synchronized."""
        orchestrator, provider, api, *_ = make_orchestrator(
            profile=ProfileMetadata(
                handle="alice.bsky.social", display_name="Alice", avatar=None
            ),
        )
        provider.pds = "https://pds.example/"
        await orchestrator.sign_in("alice.example")
        minted = orchestrator.session_id

        enhanced = await orchestrator.handle_callback({"code": "abc", "state": "x"})

        assert enhanced.session_id == minted
        assert enhanced.handle == "alice.bsky.social"
        assert enhanced.pds == "https://pds.example/"
        assert orchestrator.phase == AuthPhase.authenticated
        assert orchestrator.current is enhanced
        api.sync.assert_awaited_once()
        kwargs = api.sync.await_args.kwargs
        assert kwargs["session_id"] == minted
        assert kwargs["display_name"] == "Alice"
        assert kwargs["user_agent"] == "pytest"
        assert kwargs["platform"] == "test"

    async def test_callback_without_state_mints_pair(self):
        """Test a callback with no state and no profile yields a fresh session/device pair."""
        provider = ScriptedProvider(sub="did:plc:abc123")
        provider.pass_state = False
        orchestrator, _, api, _, resolver = make_orchestrator(provider=provider)

        enhanced = await orchestrator.handle_callback({"code": "abc"})

        assert enhanced.did == "did:plc:abc123"
        assert sanitize_session_id(enhanced.session_id) is not None
        assert sanitize_device_id(enhanced.device_id) is not None
        assert enhanced.handle == INVALID_HANDLE
        resolver.assert_awaited_once_with("did:plc:abc123")
        api.sync.assert_awaited_once()

    async def test_callback_with_ident_state_uses_ident_handle(self):
        """Test the scenario where only the sign-in ident carries a handle."""
        orchestrator, provider, *_ = make_orchestrator()
        await orchestrator.sign_in("alice.example")

        enhanced = await orchestrator.handle_callback({"code": "abc"})

        assert enhanced.did == "did:plc:abc123"
        assert enhanced.handle == "alice.example"
        assert enhanced.session_id.startswith("sess_")
        assert enhanced.device_id.startswith("dev_")

    async def test_callback_with_unparsable_state_mints_fresh_session_id(self):
        provider = ScriptedProvider()
        provider.state_override = "not-a-signed-state"
        orchestrator, *_ = make_orchestrator(provider=provider)
        await orchestrator.sign_in("alice.example")
        minted = orchestrator.session_id

        enhanced = await orchestrator.handle_callback({"code": "abc"})

        assert enhanced is not None
        assert enhanced.session_id != minted
        assert sanitize_session_id(enhanced.session_id) is not None

    async def test_callback_uses_document_when_profile_missing(self):
        resolved = ResolvedSubject(
            did="did:plc:abc123", handle="alice.example", pds="https://pds.example/"
        )
        provider = ScriptedProvider()
        provider.pass_state = False
        orchestrator, *_ = make_orchestrator(provider=provider, resolved=resolved)

        enhanced = await orchestrator.handle_callback({"code": "abc"})

        assert enhanced.handle == "alice.example"
        assert enhanced.pds == "https://pds.example/"

    async def test_callback_no_session(self):
        provider = ScriptedProvider()
        provider.return_session = False
        orchestrator, _, api, *_ = make_orchestrator(provider=provider)

        assert await orchestrator.handle_callback({"error": "access_denied"}) is None
        assert orchestrator.phase == AuthPhase.anonymous
        api.sync.assert_not_awaited()

    async def test_callback_provider_failure(self):
        provider = ScriptedProvider()
        provider.fail_callback = True
        orchestrator, *_ = make_orchestrator(provider=provider)

        assert await orchestrator.handle_callback({"code": "abc"}) is None
        assert orchestrator.phase == AuthPhase.anonymous

    async def test_enrichment_failures_do_not_abort(self):
        """Test profile, lookup and sync failures leave the user authenticated."""
        orchestrator, _, api, profiles, resolver = make_orchestrator()
        profiles.fetch.side_effect = RuntimeError("appview down")
        resolver.side_effect = RuntimeError("plc down")
        api.sync.side_effect = UpstreamFailure.unreachable("/api/auth/sync")
        await orchestrator.sign_in("alice.example")

        enhanced = await orchestrator.handle_callback({"code": "abc"})

        assert enhanced is not None
        assert enhanced.profile is None
        assert orchestrator.phase == AuthPhase.authenticated

    async def test_callback_survives_sync_timeout(self):
        """Test a timed out sync still completes the sign-in."""
        storage = MemoryClientStateStore()
        orchestrator, _, api, *_ = make_orchestrator(storage=storage)
        api.sync.side_effect = asyncio.TimeoutError()
        await orchestrator.sign_in("alice.example")

        enhanced = await orchestrator.handle_callback({"code": "abc"})

        assert enhanced is not None
        assert orchestrator.phase == AuthPhase.authenticated
        assert orchestrator.current is enhanced
        assert storage.values[CURRENT_DID_KEY] == "did:plc:abc123"

    async def test_callback_exposes_signed_redirect(self):
        orchestrator, *_ = make_orchestrator(default_redirect="/home")
        await orchestrator.sign_in("alice.example", redirect="/posts/1")

        enhanced = await orchestrator.handle_callback({"code": "abc"})

        assert enhanced.redirect == "/posts/1"

    async def test_callback_without_redirect_uses_default(self):
        orchestrator, *_ = make_orchestrator(default_redirect="/home")
        await orchestrator.sign_in("alice.example")

        enhanced = await orchestrator.handle_callback({"code": "abc"})

        assert enhanced.redirect == "/home"

    async def test_callback_forged_state_redirect_ignored(self):
        """Test a redirect in a state signed with another key is not honoured."""
        forged = AuthState(
            ident="alice.example", redirect="https://evil.example/", session_id="sess_forged"
        ).sign(make_orchestrator()[0].state_key)
        provider = ScriptedProvider()
        provider.state_override = forged
        orchestrator, *_ = make_orchestrator(provider=provider, default_redirect="/home")
        await orchestrator.sign_in("alice.example", redirect="/posts/1")

        enhanced = await orchestrator.handle_callback({"code": "abc"})

        assert enhanced is not None
        assert enhanced.redirect == "/home"
        assert enhanced.session_id != "sess_forged"

    async def test_callback_remembers_did_and_session(self):
        storage = MemoryClientStateStore()
        orchestrator, *_ = make_orchestrator(storage=storage)
        await orchestrator.sign_in("alice.example")

        enhanced = await orchestrator.handle_callback({"code": "abc"})

        assert storage.values[CURRENT_DID_KEY] == "did:plc:abc123"
        assert storage.values[SESSION_ID_KEY] == enhanced.session_id


class TestRestore:
    """Test suite for restore."""

    async def test_restore_remembered_did(self):
        provider = ScriptedProvider()
        provider.restorable["did:plc:abc123"] = ExternalSession(
            sub="did:plc:abc123", pds="https://pds.example/"
        )
        storage = MemoryClientStateStore(
            {CURRENT_DID_KEY: "did:plc:abc123", SESSION_ID_KEY: "sess_known"}
        )
        orchestrator, _, api, *_ = make_orchestrator(provider=provider, storage=storage)

        enhanced = await orchestrator.restore()

        assert enhanced.session_id == "sess_known"
        assert orchestrator.phase == AuthPhase.authenticated
        api.sync.assert_awaited_once()
        api.update_activity.assert_awaited_once()
        assert api.update_activity.await_args.args[0] == "sess_known"

    async def test_restore_nothing_remembered(self):
        orchestrator, provider, api, *_ = make_orchestrator()

        assert await orchestrator.restore() is None
        assert orchestrator.phase == AuthPhase.anonymous
        api.sync.assert_not_awaited()

    async def test_restore_provider_has_no_session(self):
        storage = MemoryClientStateStore({CURRENT_DID_KEY: "did:plc:gone"})
        orchestrator, *_ = make_orchestrator(storage=storage)

        assert await orchestrator.restore() is None
        assert orchestrator.phase == AuthPhase.anonymous

    async def test_restore_activity_failure_is_tolerated(self):
        provider = ScriptedProvider()
        provider.restorable["did:plc:abc123"] = ExternalSession(sub="did:plc:abc123")
        orchestrator, _, api, *_ = make_orchestrator(provider=provider)
        api.update_activity.side_effect = NotFound.session()

        enhanced = await orchestrator.restore("did:plc:abc123")

        assert enhanced is not None
        assert orchestrator.phase == AuthPhase.authenticated

    async def test_restore_survives_timeouts(self):
        provider = ScriptedProvider()
        provider.restorable["did:plc:abc123"] = ExternalSession(sub="did:plc:abc123")
        orchestrator, _, api, *_ = make_orchestrator(provider=provider)
        api.sync.side_effect = asyncio.TimeoutError()
        api.update_activity.side_effect = asyncio.TimeoutError()

        enhanced = await orchestrator.restore("did:plc:abc123")

        assert enhanced is not None
        assert orchestrator.phase == AuthPhase.authenticated


class TestSignOut:
    """Test suite for sign_out."""

    async def test_sign_out(self):
        storage = MemoryClientStateStore()
        orchestrator, provider, api, *_ = make_orchestrator(storage=storage)
        await orchestrator.sign_in("alice.example")
        enhanced = await orchestrator.handle_callback({"code": "abc"})

        await orchestrator.sign_out()

        assert provider.revoked == ["did:plc:abc123"]
        api.deactivate.assert_awaited_once_with(enhanced.session_id)
        assert orchestrator.phase == AuthPhase.anonymous
        assert orchestrator.current is None
        assert orchestrator.session_id != enhanced.session_id
        assert CURRENT_DID_KEY not in storage.values
        assert SESSION_ID_KEY not in storage.values
        assert storage.values[DEVICE_ID_KEY] == orchestrator.device_id

    @pytest.mark.parametrize(
        "deactivate_error",
        [
            UpstreamFailure.unreachable("/api/auth/deactivate"),
            asyncio.TimeoutError(),
            RuntimeError("unexpected"),
        ],
    )
    async def test_sign_out_always_ends_anonymous(self, deactivate_error):
        """Test revoke and deactivate failures still forget the identity and end anonymous."""
        storage = MemoryClientStateStore()
        provider = ScriptedProvider()
        orchestrator, _, api, *_ = make_orchestrator(provider=provider, storage=storage)
        await orchestrator.sign_in("alice.example")
        await orchestrator.handle_callback({"code": "abc"})
        provider.fail_revoke = True
        api.deactivate.side_effect = deactivate_error

        await orchestrator.sign_out()

        assert orchestrator.phase == AuthPhase.anonymous
        assert orchestrator.current is None
        assert orchestrator.remembered_did is None
        assert CURRENT_DID_KEY not in storage.values
        assert SESSION_ID_KEY not in storage.values

    async def test_sign_out_when_anonymous(self):
        orchestrator, provider, *_ = make_orchestrator()

        await orchestrator.sign_out()

        assert provider.revoked == []
        assert orchestrator.phase == AuthPhase.anonymous


class TestTouch:
    async def test_touch_requires_authentication(self):
        orchestrator, _, api, *_ = make_orchestrator()
        assert await orchestrator.touch() is False
        api.update_activity.assert_not_awaited()

    async def test_touch_reports_activity(self):
        orchestrator, _, api, *_ = make_orchestrator()
        await orchestrator.sign_in("alice.example")
        enhanced = await orchestrator.handle_callback({"code": "abc"})

        assert await orchestrator.touch() is True
        api.update_activity.assert_awaited_once()
        assert api.update_activity.await_args.args[0] == enhanced.session_id
