"""
Identity Resolution

Best-effort lookup of AT Protocol DID documents, used to derive the handle and the PDS
location of an authenticated subject when the identity provider does not supply them.

Resolution Types:
- did:plc method resolution via the PLC directory
- did:web method resolution via well-known endpoints

Failures never propagate: a subject that cannot be resolved simply has no derived data.
"""
