"""AT Protocol DID document lookup.

Fetches DID documents for did:plc and did:web subjects and extracts the handle and PDS
endpoint they advertise. Lookup is best-effort: the session orchestrator only uses the
result to fill in a PDS URL or handle the provider and profile did not supply, so every
failure resolves to None.
"""

from typing import Any, Dict, Optional
from aiohttp import ClientSession
from pydantic import BaseModel
import sentry_sdk


class ResolvedSubject(BaseModel):
    """Identifiers advertised by a DID document.

    Either the handle or the PDS may be missing from a document.
    """

    did: str
    handle: Optional[str] = None
    pds: Optional[str] = None


def handle_predicate(value: Any) -> bool:
    return isinstance(value, str) and value.startswith("at://")


def pds_predicate(value: Dict[str, Any]) -> bool:
    """Check if service entry is an AT Protocol PDS.

    Args:
        value: Service dictionary from DID document

    Returns:
        True if service is AtprotoPersonalDataServer with endpoint
    """
    return (
        isinstance(value, dict)
        and value.get("type", None) == "AtprotoPersonalDataServer"
        and "serviceEndpoint" in value
    )


def parse_did_document(did: str, body: Any) -> Optional[ResolvedSubject]:
    """Extract the handle and PDS endpoint from a DID document body."""
    if not isinstance(body, dict):
        return None
    handle = next(filter(handle_predicate, body.get("alsoKnownAs", None) or []), None)
    pds = next(filter(pds_predicate, body.get("service", None) or []), None)
    if handle is None and pds is None:
        return None
    return ResolvedSubject(
        did=did,
        handle=handle.removeprefix("at://") if handle is not None else None,
        pds=pds.get("serviceEndpoint") if pds is not None else None,
    )


async def fetch_did_document(
    session: ClientSession, did: str, url: str
) -> Optional[ResolvedSubject]:
    try:
        async with session.get(url) as resp:
            if resp.status != 200:
                return None
            body = await resp.json(content_type=None)
    except Exception as e:
        sentry_sdk.capture_exception(e)
        return None
    return parse_did_document(did, body)


async def resolve_did_method_plc(
    plc_directory: str, session: ClientSession, did: str
) -> Optional[ResolvedSubject]:
    """Resolve did:plc DID through the PLC directory.

    Args:
        plc_directory: PLC directory hostname
        session: HTTP client session
        did: did:plc DID to resolve

    Returns:
        ResolvedSubject if the document names a handle or PDS, None otherwise
    """
    return await fetch_did_document(session, did, f"https://{plc_directory}/{did}")


async def resolve_did_method_web(
    session: ClientSession, did: str
) -> Optional[ResolvedSubject]:
    """Resolve did:web DID through its did.json document.

    A bare host resolves through `/.well-known/did.json`, a host with path segments
    through `/{path}/did.json`.
    """
    parts = did.removeprefix("did:web:").split(":")
    if len(parts) == 0 or parts[0] == "":
        return None

    if len(parts) == 1:
        parts.append(".well-known")

    url = "https://{inner}/did.json".format(inner="/".join(parts))
    return await fetch_did_document(session, did, url)


async def resolve_did(
    session: ClientSession, plc_hostname: str, did: str
) -> Optional[ResolvedSubject]:
    """Resolve DID to the handle and PDS its document advertises.

    Routes to appropriate resolver based on DID method (plc or web).

    Args:
        session: HTTP client session
        plc_hostname: PLC directory hostname for did:plc resolution
        did: DID to resolve

    Returns:
        ResolvedSubject if successful, None if unsupported or failed
    """
    if did.startswith("did:plc:"):
        return await resolve_did_method_plc(plc_hostname, session, did)
    elif did.startswith("did:web:"):
        return await resolve_did_method_web(session, did)
    return None
