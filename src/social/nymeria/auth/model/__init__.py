"""
Database Models

This package defines the database models using SQLAlchemy ORM.

Key Models:
- base.py: Base SQLAlchemy model with common type definitions
- identities.py: AT Protocol identities keyed by DID
- sessions.py: Server-side session records owned by an identity
- health.py: Health monitoring gauge

The data models follow these relationships:
- Identity: a DID with its current handle, profile fields and PDS location
- SessionRecord: one client session (session_id) on one device, owned by an Identity

Identities are never hard-deleted and session records are deactivated rather than removed.
Removing an identity cascades to its session records.
"""
