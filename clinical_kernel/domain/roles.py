"""
Roles and actors (``clinical_kernel.domain.roles``).

Responsibility
--------------
Closed enumeration of the roles that may act on clinical records, plus the
``Actor`` identity supplied by the upstream authentication layer.

Role strings arrive from several sources with inconsistent spelling
(``"Admin"``, ``"admin"``, ``"BillingStaff"``, ``"Lab Technician"``,
``"insurance_staff"``).  They are normalized exactly once, at the boundary,
by ``Role.parse``.  Business logic below the boundary compares ``Role``
members, never raw strings.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from clinical_kernel.exceptions import PermissionDeniedError, UnauthorizedError

_SEPARATORS = re.compile(r"[\s_\-]+")
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z])(?=[A-Z])")


class Role(str, Enum):
    ADMIN = "admin"
    DOCTOR = "doctor"
    NURSE = "nurse"
    PATIENT = "patient"
    LAB_TECHNICIAN = "lab_technician"
    RECEPTIONIST = "receptionist"
    BILLING_STAFF = "billing_staff"
    INSURANCE_STAFF = "insurance_staff"

    @classmethod
    def parse(cls, value: "Role | str") -> "Role":
        """Normalize a role spelling to a ``Role`` member.

        Accepts any casing and any of space, hyphen, underscore or a
        CamelCase boundary as the word separator.

        Raises:
            ValueError: If the value names no known role.
        """
        if isinstance(value, Role):
            return value
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"Unknown role: {value!r}")
        split = _CAMEL_BOUNDARY.sub("_", value.strip())
        key = _SEPARATORS.sub("_", split).lower()
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unknown role: {value!r}") from None

    @classmethod
    def try_parse(cls, value: "Role | str | None") -> "Role | None":
        if value is None:
            return None
        try:
            return cls.parse(value)
        except ValueError:
            return None

    def __str__(self) -> str:
        return self.value


class RecordPermission(str, Enum):
    """Explicit per-record capabilities granted to roles."""

    READ = "read"
    EDIT = "edit"
    APPROVE = "approve"
    REJECT = "reject"


@dataclass(frozen=True)
class Actor:
    """An authenticated identity acting on a record or workflow instance.

    Contract: ``role`` is always a ``Role`` member; use ``Actor.from_identity``
    to build one from boundary input.
    """

    id: str
    role: Role
    name: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    @classmethod
    def from_identity(cls, identity: dict | None) -> "Actor":
        """Build an actor from an upstream ``{id, role, name}`` mapping.

        Raises:
            UnauthorizedError: No identity, or the identity has no id.
            PermissionDeniedError: The role string names no known role.
        """
        if not identity or not identity.get("id"):
            raise UnauthorizedError()
        raw_role = identity.get("role")
        role = Role.try_parse(raw_role)
        if role is None:
            raise PermissionDeniedError(
                role=str(raw_role), action="authenticate", step="-"
            )
        return cls(
            id=str(identity["id"]),
            role=role,
            name=identity.get("name") or identity.get("username") or "",
        )
