"""
auth/permissions.py -- Resource:action permission model.

has_permission() is the whole evaluator: a pure function of a Role and a
(resource, action) pair. It never touches storage; the caller loads the role.

Rules:
  - No role, or an inactive role, grants nothing.
  - A resource absent from the map grants nothing.
  - An action is granted if it is listed for the resource, or if the
    resource lists the wildcard action "*".
  - There is no wildcard resource. "*" is rejected as a resource name.

normalize_permissions() validates loosely-typed input (JSON from the DB or a
request body) into dict[str, frozenset[str]]. Stores call it when reading
rows so no unvalidated shape reaches the evaluator.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from auth.models import Role

WILDCARD = "*"

_NAME_RE = re.compile(r"^[a-z][a-z0-9_\-]{0,49}$")

# Resources and actions the bundled routes declare. Roles may name others;
# this catalog is what GET /roles/permissions advertises to admin UIs.
CATALOG: dict[str, tuple[str, ...]] = {
    "users": ("read", "create", "update", "delete"),
    "roles": ("read", "create", "update", "delete"),
    "settings": ("read", "update"),
}


@dataclass(frozen=True)
class Permission:
    resource: str
    action: str

    @classmethod
    def parse(cls, value: str) -> "Permission":
        """Parse "resource:action" into a Permission. Raises ValueError."""
        resource, sep, action = value.partition(":")
        if not sep or not resource or not action:
            raise ValueError(f"Permission must look like 'resource:action', got {value!r}")
        return cls(resource=resource, action=action)

    def __str__(self) -> str:
        return f"{self.resource}:{self.action}"


def has_permission(role: Role | None, resource: str, action: str) -> bool:
    if role is None or not role.is_active:
        return False
    actions = role.permissions.get(resource)
    if not actions:
        return False
    return action in actions or WILDCARD in actions


def has_all(role: Role | None, required: Iterable[Permission]) -> bool:
    """True iff every required permission is granted. Nothing required -> True."""
    return all(has_permission(role, p.resource, p.action) for p in required)


def normalize_permissions(raw: Any) -> dict[str, frozenset[str]]:
    """Validate a resource -> actions mapping.

    Accepts any mapping of str to an iterable of str (lists from JSON, sets
    from code). Raises ValueError on anything else, including a bare string
    in place of the action list (which would otherwise iterate per character).
    """
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ValueError("permissions must be an object mapping resource to a list of actions")
    result: dict[str, frozenset[str]] = {}
    for resource, actions in raw.items():
        if not isinstance(resource, str) or not _NAME_RE.match(resource):
            raise ValueError(f"invalid resource name: {resource!r}")
        if isinstance(actions, (str, bytes)) or not isinstance(actions, Iterable):
            raise ValueError(f"actions for {resource!r} must be a list")
        checked: set[str] = set()
        for action in actions:
            if not isinstance(action, str) or not (action == WILDCARD or _NAME_RE.match(action)):
                raise ValueError(f"invalid action for {resource!r}: {action!r}")
            checked.add(action)
        if checked:
            result[resource] = frozenset(checked)
    return result


def permissions_to_json(permissions: Mapping[str, Iterable[str]]) -> dict[str, list[str]]:
    """Sorted, JSON-ready form of a permission map."""
    return {resource: sorted(actions) for resource, actions in sorted(permissions.items())}
