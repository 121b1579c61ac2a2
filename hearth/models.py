from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field

# A snapshot is the aggregated state tree for one bridge. It is built fresh
# on every fetch and treated as read-only once handed to the poller.
Snapshot = Dict[str, Any]


class Delta(BaseModel):
    """One changed section of a snapshot, carrying the section's full value."""
    model_config = ConfigDict(frozen=True)

    kind: str
    payload: Any
    scope: Optional[str] = None

    def to_message(self) -> Dict[str, Any]:
        out = {"kind": self.kind, "payload": self.payload}
        if self.scope is not None:
            out["scope"] = self.scope
        return out


class SessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    bridge_id: Optional[str] = Field(default=None, alias="bridgeId")
    credential: Optional[str] = None
    demo_mode: bool = Field(default=False, alias="demoMode")


class ServiceCredential(BaseModel):
    credential: Optional[str] = None


class SessionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token: str
    expires_in: float = Field(alias="expiresIn")
    bridge_id: str = Field(alias="bridgeId")


class SessionStats(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    active_sessions: int = Field(alias="activeSessions")
    oldest_age_ms: int = Field(alias="oldestAgeMs")
    newest_age_ms: int = Field(alias="newestAgeMs")


class BridgeStatus(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    bridge_id: str = Field(alias="bridgeId")
    has_credentials: bool = Field(alias="hasCredentials")
