"""Domain types for class sessions."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional


class CreateStatus(str, Enum):
    CREATE_PENDING = "CREATE_PENDING"
    CREATED = "CREATED"
    FAILED = "FAILED"


class UpdateStatus(str, Enum):
    UPDATE_PENDING = "UPDATE_PENDING"
    UPDATED = "UPDATED"
    FAILED = "FAILED"


class Verifier(str, Enum):
    """Which external check produced a verification result."""
    TUTOR = "tutor"
    CLASS = "class"


class Weekday(str, Enum):
    SUNDAY = "SUNDAY"
    MONDAY = "MONDAY"
    TUESDAY = "TUESDAY"
    WEDNESDAY = "WEDNESDAY"
    THURSDAY = "THURSDAY"
    FRIDAY = "FRIDAY"
    SATURDAY = "SATURDAY"


class ClassSessionStatus(str, Enum):
    """Derived, read-side status used for filtering."""
    CANCELLED = "CANCELLED"
    CONCLUDED = "CONCLUDED"
    SCHEDULED = "SCHEDULED"


class UserRole(str, Enum):
    STUDENT = "STUDENT"
    TUTOR = "TUTOR"
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"


class ApplicationStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


@dataclass(frozen=True)
class Material:
    """File attached to a session."""

    id: str
    description: str = ""
    title: Optional[str] = None
    url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Material":
        return cls(
            id=data["id"],
            description=data.get("description") or "",
            title=data.get("title"),
            url=data.get("url"),
        )


@dataclass(frozen=True)
class UserMakeRequest:
    """Identity of the caller issuing a command or query."""

    user_id: Optional[str]
    user_role: UserRole


def validate_class_and_session_address(
    is_online: bool,
    address: Optional[str],
    ward_id: Optional[str],
) -> bool:
    """Check the location invariant.

    Online sessions need no address. Offline sessions need both address and
    ward, or neither (the class default address is then resolved later).
    """
    if is_online:
        return True
    return bool(address) == bool(ward_id)


def is_address_missing(is_online: bool, address: Optional[str], ward_id: Optional[str]) -> bool:
    return not is_online and not (address and ward_id)
