from dataclasses import dataclass, field
from typing import List


@dataclass
class User:
    """The authenticated caller of the access service."""
    id: str
    email: str
    groups: List[str] = field(default_factory=list)
    is_admin: bool = False
