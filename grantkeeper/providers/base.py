"""
The capability contract every provider implements.

Providers are plain classes that satisfy these protocols structurally; there is
no shared base class. Args arrive as the opaque JSON the grant was created with.
"""
import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Protocol, Union, runtime_checkable

from grantkeeper.core.context import Context
from grantkeeper.errors import ValidationError

Args = Union[str, bytes, Dict[str, Any]]


@dataclass
class Option:
    label: str
    value: str


@runtime_checkable
class Provider(Protocol):
    def grant(self, ctx: Context, subject: str, args: Args, grant_id: str) -> None:
        ...

    def revoke(self, ctx: Context, subject: str, args: Args, grant_id: str) -> None:
        ...

    def is_active(self, ctx: Context, subject: str, args: Args, grant_id: str) -> bool:
        ...

    def instructions(self, ctx: Context, subject: str, args: Args, grant_id: str) -> str:
        ...


@runtime_checkable
class ArgValidator(Protocol):
    """Optional capability: reject bad args before a grant is created."""
    def validate(self, args: Args) -> None:
        ...


@runtime_checkable
class ArgOptioner(Protocol):
    """Optional capability: list the legal values of a dynamic argument."""
    def options(self, ctx: Context, arg_id: str) -> List[Option]:
        ...


def parse_args(args: Args, required: Iterable[str]) -> Dict[str, Any]:
    """
    Decodes provider args and checks the required fields are present and non-empty.

    Raises:
        ValidationError: Invalid JSON, not an object, or a missing field.
    """
    if isinstance(args, (str, bytes)):
        try:
            data = json.loads(args or "{}")
        except json.JSONDecodeError as e:
            raise ValidationError(f"provider args are not valid JSON: {e}")
    else:
        data = args or {}

    if not isinstance(data, dict):
        raise ValidationError("provider args must be a JSON object")

    for key in required:
        value = data.get(key)
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"provider args are missing required field '{key}'")
    return data
