import datetime
import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from grantkeeper.errors import ValidationError


class GrantStatus:
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"
    ERROR = "ERROR"

    ALL = (PENDING, ACTIVE, EXPIRED, REVOKED, ERROR)
    TERMINAL = (EXPIRED, REVOKED, ERROR)


# Legal forward moves. Nothing ever goes back to PENDING.
_TRANSITIONS = {
    GrantStatus.PENDING: {GrantStatus.ACTIVE, GrantStatus.REVOKED, GrantStatus.ERROR},
    GrantStatus.ACTIVE: {GrantStatus.EXPIRED, GrantStatus.REVOKED, GrantStatus.ERROR},
    GrantStatus.EXPIRED: set(),
    GrantStatus.REVOKED: set(),
    GrantStatus.ERROR: set(),
}


def _to_iso(ts: Optional[datetime.datetime]) -> Optional[str]:
    if ts is None:
        return None
    return ts.astimezone(datetime.timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _from_iso(value: Optional[str]) -> Optional[datetime.datetime]:
    if not value:
        return None
    return datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass
class Grant:
    """
    A time-bounded permission assignment on one provider for one subject.

    The running workflow execution holds the canonical copy of a Grant as its
    input; instances of this class are snapshots recovered from it.

    Attributes:
        id: Globally unique grant ID (also the execution name).
        provider: ID of the configured provider that fulfils the grant.
        subject: Principal identifier, usually an email address.
        with_: Provider specific arguments (serialized as "with").
        status: One of GrantStatus.
        start: When access begins.
        end: When access must be revoked.
    """
    id: str
    provider: str
    subject: str
    with_: Dict[str, Any] = field(default_factory=dict)
    status: str = GrantStatus.PENDING
    start: Optional[datetime.datetime] = None
    end: Optional[datetime.datetime] = None

    @staticmethod
    def create_id() -> str:
        """Generates a grant ID short enough to never be truncated by providers (32 chars)."""
        return "gra_" + uuid.uuid4().hex[:28]

    def transition(self, new_status: str) -> None:
        """Moves the grant forward, refusing illegal or backwards transitions."""
        if new_status not in GrantStatus.ALL:
            raise ValidationError(f"unknown grant status: {new_status}")
        if new_status == self.status:
            return
        if new_status not in _TRANSITIONS[self.status]:
            raise ValidationError(f"grant {self.id} cannot move from {self.status} to {new_status}")
        self.status = new_status

    def args_json(self) -> str:
        return json.dumps(self.with_, sort_keys=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "provider": self.provider,
            "subject": self.subject,
            "with": self.with_,
            "status": self.status,
            "start": _to_iso(self.start),
            "end": _to_iso(self.end),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Grant":
        for key in ("id", "provider", "subject"):
            if not data.get(key):
                raise ValidationError(f"grant is missing required field '{key}'")
        status = data.get("status") or GrantStatus.PENDING
        if status not in GrantStatus.ALL:
            raise ValidationError(f"unknown grant status: {status}")
        return cls(
            id=data["id"],
            provider=data["provider"],
            subject=data["subject"],
            with_=dict(data.get("with") or {}),
            status=status,
            start=_from_iso(data.get("start")),
            end=_from_iso(data.get("end")),
        )


@dataclass
class WorkflowInput:
    """The durable input of a grant execution: {"grant": {...}}."""
    grant: Grant

    def to_json(self) -> str:
        return json.dumps({"grant": self.grant.to_dict()})

    @classmethod
    def from_json(cls, raw: str) -> "WorkflowInput":
        try:
            data = json.loads(raw)
        except (TypeError, json.JSONDecodeError) as e:
            raise ValidationError(f"execution input is not valid JSON: {e}")
        if not isinstance(data, dict) or not isinstance(data.get("grant"), dict):
            raise ValidationError("execution input has no 'grant' object")
        return cls(grant=Grant.from_dict(data["grant"]))
