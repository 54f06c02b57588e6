from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import datetime
import uuid


class RequestStatus:
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DECLINED = "DECLINED"
    CANCELLED = "CANCELLED"
    REVOKED = "REVOKED"

    ALL = (PENDING, APPROVED, DECLINED, CANCELLED, REVOKED)
    TERMINAL = (DECLINED, CANCELLED, REVOKED)


@dataclass
class Timing:
    duration_seconds: int
    start_time: Optional[datetime.datetime] = None

    @property
    def duration(self) -> datetime.timedelta:
        return datetime.timedelta(seconds=self.duration_seconds)


@dataclass
class Request:
    """
    Represents an access request within the system.
    This mirrors the item stored in the DynamoDB state table.

    Attributes:
        id: Unique ID for the request (req_...).
        requested_by: ID of the user who asked for access.
        subject: Email of the requester; becomes the grant subject.
        rule_id: The access rule the request was validated against.
        rule_version: The rule version in force when the request was made.
        status: The current state (PENDING, APPROVED, DECLINED, CANCELLED, REVOKED).
        timing: Requested duration (and optional start).
        arguments: Extra provider arguments chosen by the requester.
        grant_id: Set once the request is approved and a grant is started.
        requested_at: Creation time (UTC).
        updated_at: Time of the last status change (UTC).
    """
    id: str
    requested_by: str
    subject: str
    rule_id: str
    rule_version: str
    timing: Timing
    status: str = RequestStatus.PENDING
    arguments: Dict[str, Any] = field(default_factory=dict)
    grant_id: Optional[str] = None
    requested_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None

    @staticmethod
    def create_id() -> str:
        """Generates a unique ID for the request."""
        return "req_" + uuid.uuid4().hex[:24]

    def is_terminal(self) -> bool:
        return self.status in RequestStatus.TERMINAL


@dataclass
class Reviewer:
    """Grants one user the right to decide on (and revoke) one request."""
    request_id: str
    reviewer_id: str


@dataclass
class Target:
    provider_id: str
    provider_type: str
    with_: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Approval:
    """User IDs who must approve requests made under a rule. Empty means auto-approve."""
    users: List[str] = field(default_factory=list)

    def is_required(self) -> bool:
        return bool(self.users)


@dataclass
class AccessRule:
    """
    A versioned policy template. A request pins the version it was made under.
    """
    id: str
    version: str
    name: str
    groups: List[str]
    target: Target
    max_duration_seconds: int
    approval: Approval = field(default_factory=Approval)
    description: str = ""

    @property
    def max_duration(self) -> datetime.timedelta:
        return datetime.timedelta(seconds=self.max_duration_seconds)
