from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional


@dataclass
class AuditEvent:
    """Base for typed audit events. Subclasses set EVENT_TYPE."""
    EVENT_TYPE = "event"

    @property
    def event_type(self) -> str:
        return self.EVENT_TYPE

    def detail(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RequestCreated(AuditEvent):
    EVENT_TYPE = "request.created"
    request_id: str
    requested_by: str
    rule_id: str
    reviewer_ids: Optional[list] = None


@dataclass
class RequestReviewed(AuditEvent):
    EVENT_TYPE = "request.reviewed"
    request_id: str
    reviewer_id: str
    decision: str


@dataclass
class RequestCancelled(AuditEvent):
    EVENT_TYPE = "request.cancelled"
    request_id: str
    cancelled_by: str


@dataclass
class GrantCreated(AuditEvent):
    EVENT_TYPE = "grant.created"
    request_id: str
    grant_id: str
    provider: str


@dataclass
class GrantRevoked(AuditEvent):
    EVENT_TYPE = "grant.revoked"
    request_id: str
    grant_id: str
    revoked_by: str
