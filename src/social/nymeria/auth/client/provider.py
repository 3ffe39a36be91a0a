"""Identity-provider capability.

The OAuth library itself (PAR, PKCE, DPoP, token exchange) lives outside this package. The
orchestrator only needs the four operations below, so any provider implementation can be
adapted to it.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Mapping, Optional

from social.nymeria.auth.client.models import ExternalSession


@dataclass(frozen=True)
class CallbackResult:
    session: ExternalSession
    state: Optional[str] = None


class OAuthProvider(ABC):

    @abstractmethod
    async def authorize(self, ident: str, state: str) -> str:
        """Begin authorization for a handle or DID and return the URL to redirect to."""
        pass

    @abstractmethod
    async def callback(self, params: Mapping[str, str]) -> Optional[CallbackResult]:
        """
        Complete authorization from the redirect query parameters.

        Returns None when the parameters do not carry a completed authorization.
        """
        pass

    @abstractmethod
    async def restore(self, did: str) -> Optional[ExternalSession]:
        pass

    @abstractmethod
    async def revoke(self, did: str) -> None:
        pass
