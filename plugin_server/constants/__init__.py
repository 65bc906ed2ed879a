"""Constants package for the plugin server."""

from .roles import ROLE_HIERARCHY, OrgRole, role_includes

__all__ = [
    "OrgRole",
    "ROLE_HIERARCHY",
    "role_includes",
]
