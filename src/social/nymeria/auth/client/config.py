from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientSettings(BaseSettings):
    """
    Settings for the client-side session orchestrator.

    Loaded from environment variables prefixed with NYMERIA_, for example
    NYMERIA_API_BASE_URL.
    """

    model_config = SettingsConfigDict(env_prefix="nymeria_")

    api_base_url: str = "http://localhost:5100"
    """
    Base URL of the service that serves /api/auth/*.
    """

    profile_service: str = "https://public.api.bsky.app"
    """
    AppView queried for public profiles.
    """

    plc_hostname: str = "plc.directory"
    """
    Hostname of the PLC directory used for did:plc document lookups.
    """

    default_redirect: Optional[str] = None
    """
    Redirect recorded in the sign-in state when the caller supplies none.
    """

    activity_interval: float = Field(default=300.0, gt=0)
    """
    Seconds between activity ticks while authenticated.
    """

    state_lifetime: int = Field(default=600, gt=0)
    """
    Seconds a signed OAuth state value stays valid.
    """

    user_agent: Optional[str] = None
    """
    Reported as metadata.deviceInfo.userAgent on sync.
    """

    platform: str = "python"
    """
    Reported as metadata.deviceInfo.platform on sync.
    """
