"""
Client-side session orchestration.

The orchestrator drives the OAuth handshake against an identity-provider capability,
enriches the resulting session with profile data, and keeps the server-side session record
in step through the session API.

Key Components:
- orchestrator.py: the sign-in / callback / restore / sign-out state machine
- models.py: AuthState, ExternalSession, LocalEnrichment and EnhancedSession
- provider.py: the identity-provider capability interface
- api.py: HTTP client for the session endpoints
- profile.py: best-effort profile fetch
- storage.py: client-side persistence for the device id and the remembered identity
- activity.py: periodic activity tick
"""
