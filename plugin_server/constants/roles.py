"""
Organization Role Constants

Roles a signed-in user holds inside their current organization.
"""

from enum import Enum


class OrgRole(str, Enum):
    """Enumeration of organization roles."""

    VIEWER = "Viewer"
    EDITOR = "Editor"
    ADMIN = "Admin"


# Role hierarchy (higher number = more permissions)
ROLE_HIERARCHY = {
    OrgRole.VIEWER: 1,
    OrgRole.EDITOR: 2,
    OrgRole.ADMIN: 3,
}


def role_includes(role: str, required: str) -> bool:
    """
    Check if `role` grants at least the privileges of `required`.

    Unknown role names never include anything.
    """
    try:
        held = ROLE_HIERARCHY[OrgRole(role)]
        needed = ROLE_HIERARCHY[OrgRole(required)]
    except ValueError:
        return False
    return held >= needed
