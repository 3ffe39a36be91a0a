"""
Request bodies for the session endpoints.

Every string field is passed through the matching sanitizer before it reaches the session
layer. A sanitizer rejection becomes a pydantic validation error, which the handlers turn
into a 400 response that names the field without echoing the submitted value.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from social.nymeria.auth.security.sanitize import (
    sanitize_device_id,
    sanitize_did,
    sanitize_handle,
    sanitize_session_id,
    sanitize_text,
    sanitize_url,
)

MAX_DISPLAY_NAME_LENGTH = 64
MAX_DESCRIPTION_LENGTH = 300
MAX_URL_LENGTH = 2048
MAX_USER_AGENT_LENGTH = 512
MAX_PLATFORM_LENGTH = 64
MAX_CLOCK_SKEW = timedelta(minutes=5)


def _optional_text(value: Optional[str], max_length: int) -> Optional[str]:
    cleaned = sanitize_text(value, max_length)
    if cleaned is None or len(cleaned) == 0:
        return None
    return cleaned


def _optional_url(value: Optional[str]) -> Optional[str]:
    if value is None or len(value.strip()) == 0:
        return None
    if len(value) > MAX_URL_LENGTH:
        raise ValueError("URL too long")
    cleaned = sanitize_url(value.strip())
    if cleaned is None or len(cleaned) > MAX_URL_LENGTH:
        raise ValueError("invalid URL")
    return cleaned


def _session_id(value: str) -> str:
    cleaned = sanitize_session_id(value)
    if cleaned is None:
        raise ValueError("invalid session ID format")
    return cleaned


class DeviceInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_agent: Optional[str] = Field(default=None, alias="userAgent")
    platform: Optional[str] = None

    @field_validator("user_agent")
    @classmethod
    def clean_user_agent(cls, v: Optional[str]) -> Optional[str]:
        return _optional_text(v, MAX_USER_AGENT_LENGTH)

    @field_validator("platform")
    @classmethod
    def clean_platform(cls, v: Optional[str]) -> Optional[str]:
        return _optional_text(v, MAX_PLATFORM_LENGTH)


class SessionMetadata(BaseModel):
    """Non-sensitive session metadata. Anything else the client sends is dropped."""

    model_config = ConfigDict(populate_by_name=True)

    device_info: Optional[DeviceInfo] = Field(default=None, alias="deviceInfo")

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class SyncRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    did: str
    handle: str
    display_name: Optional[str] = Field(default=None, alias="displayName")
    avatar: Optional[str] = None
    description: Optional[str] = None
    pds: Optional[str] = None
    session_id: str = Field(alias="sessionId")
    device_id: str = Field(alias="deviceId")
    metadata: Optional[SessionMetadata] = None

    @field_validator("did")
    @classmethod
    def clean_did(cls, v: str) -> str:
        cleaned = sanitize_did(v)
        if cleaned is None:
            raise ValueError("invalid DID format")
        return cleaned

    @field_validator("handle")
    @classmethod
    def clean_handle(cls, v: str) -> str:
        cleaned = sanitize_handle(v)
        if cleaned is None:
            raise ValueError("invalid handle format")
        return cleaned

    @field_validator("display_name")
    @classmethod
    def clean_display_name(cls, v: Optional[str]) -> Optional[str]:
        return _optional_text(v, MAX_DISPLAY_NAME_LENGTH)

    @field_validator("description")
    @classmethod
    def clean_description(cls, v: Optional[str]) -> Optional[str]:
        return _optional_text(v, MAX_DESCRIPTION_LENGTH)

    @field_validator("avatar", "pds")
    @classmethod
    def clean_url(cls, v: Optional[str]) -> Optional[str]:
        return _optional_url(v)

    @field_validator("session_id")
    @classmethod
    def clean_session_id(cls, v: str) -> str:
        return _session_id(v)

    @field_validator("device_id")
    @classmethod
    def clean_device_id(cls, v: str) -> str:
        cleaned = sanitize_device_id(v)
        if cleaned is None:
            raise ValueError("invalid device ID format")
        return cleaned


class ActivityRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")
    last_active_at: datetime = Field(alias="lastActiveAt")

    @field_validator("session_id")
    @classmethod
    def clean_session_id(cls, v: str) -> str:
        return _session_id(v)

    @field_validator("last_active_at", mode="before")
    @classmethod
    def parse_iso_timestamp(cls, v: Any) -> datetime:
        if not isinstance(v, str):
            raise ValueError("expected an ISO-8601 timestamp")
        try:
            return datetime.fromisoformat(v)
        except ValueError:
            raise ValueError("expected an ISO-8601 timestamp") from None

    @field_validator("last_active_at")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        if v > datetime.now(timezone.utc) + MAX_CLOCK_SKEW:
            raise ValueError("timestamp is in the future")
        return v


class DeactivateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")

    @field_validator("session_id")
    @classmethod
    def clean_session_id(cls, v: str) -> str:
        return _session_id(v)


def validation_issues(e: ValidationError) -> List[Dict[str, Any]]:
    """Describe validation failures by location, message and type only."""
    return [
        {
            "loc": list(error["loc"]),
            "msg": error["msg"],
            "type": error["type"],
        }
        for error in e.errors(include_url=False, include_context=False, include_input=False)
    ]
