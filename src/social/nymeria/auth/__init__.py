"""
Nymeria Auth - OAuth Session Lifecycle Manager

This package turns a browser-initiated AT Protocol OAuth authorization-code flow into a
durable, device-aware, rate-limited, server-verified session. It keeps three views of a
session consistent: the session held by the external identity provider, the credentials
held by the client, and the session record stored by the server.

Key Components:
- app: aiohttp web application exposing the synchronization, activity and deactivation
  endpoints, plus the gateway that verifies protected access
- client: the client-side orchestrator that drives sign-in, callback, restore and sign-out
- model: SQLAlchemy models for identities and session records
- resolve: best-effort DID document lookup used to derive handles and PDS locations
- security: identifier minting, input sanitization and rate limiting
- session: the persistence interface, the synchronizer and the activity tracker

Architecture Overview:
1. Sign-in:
   - The orchestrator mints a session id and hands a signed state value to the provider
   - The provider redirects back with an authorization code that it exchanges itself

2. Synchronization:
   - The orchestrator posts the authenticated identity to /api/auth/sync
   - The server rate limits, validates and upserts the identity and the session record

3. Activity and expiry:
   - Activity pings move last_active_at forward
   - Sign-out deactivates the record; expiry is enforced when the gateway verifies a session
"""
