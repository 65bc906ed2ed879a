"""
Plugin request context.

Everything a backend plugin needs to know about who is calling it: the org,
the user and, for app plugins, the org's settings for that app.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from plugin_server.plugins.errors import PluginSettingNotFoundError
from plugin_server.services import plugin_settings

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from plugin_server.auth import SignedInUser
    from plugin_server.plugins.registry import PluginRegistry

logger = logging.getLogger(__name__)

# Printable ASCII other than "%" passes through; everything else is percent-encoded
_HEADER_SAFE = "".join(chr(c) for c in range(0x20, 0x7F) if chr(c) != "%")


def header_value(value: str) -> str:
    return quote(value, safe=_HEADER_SAFE)


@dataclass
class AppInstanceSettings:
    json_data: dict[str, Any] = field(default_factory=dict)
    decrypted_secure_json_data: dict[str, str] = field(default_factory=dict)
    updated: datetime | None = None


@dataclass
class PluginContext:
    org_id: int
    plugin_id: str
    login: str = ""
    org_role: str = ""
    app_instance_settings: AppInstanceSettings | None = None

    def to_headers(self) -> dict[str, str]:
        """Encode the context as request headers for the backend process."""
        headers = {
            "X-Plugin-Id": header_value(self.plugin_id),
            "X-Plugin-Org-Id": str(self.org_id),
            "X-Plugin-User": header_value(self.login),
            "X-Plugin-Org-Role": self.org_role,
        }
        if self.app_instance_settings is not None:
            headers["X-Plugin-App-Settings"] = json.dumps(
                {
                    "jsonData": self.app_instance_settings.json_data,
                    "decryptedSecureJsonData": self.app_instance_settings.decrypted_secure_json_data,
                    "updated": self.app_instance_settings.updated.isoformat() if self.app_instance_settings.updated else None,
                }
            )
        return headers


class PluginContextProvider:
    def __init__(self, registry: PluginRegistry, db: AsyncSession):
        self.registry = registry
        self.db = db

    async def get(self, plugin_id: str, user: SignedInUser) -> PluginContext | None:
        """
        Build the context for a call to plugin_id on behalf of user.

        Returns None when the plugin is not installed.  Settings store
        failures other than "no setting yet" propagate.
        """
        plugin = self.registry.plugin(plugin_id)
        if plugin is None:
            return None

        ctx = PluginContext(
            org_id=user.org_id,
            plugin_id=plugin_id,
            login=user.login,
            org_role=user.org_role.value,
        )

        if plugin.is_app():
            try:
                setting = await plugin_settings.get_plugin_setting_by_id(self.db, plugin_id, user.org_id)
            except PluginSettingNotFoundError:
                logger.debug("No settings for app %s in org %s", plugin_id, user.org_id)
                ctx.app_instance_settings = AppInstanceSettings()
            else:
                ctx.app_instance_settings = AppInstanceSettings(
                    json_data=setting.json_data or {},
                    decrypted_secure_json_data=dict(setting.secure_json_data or {}),
                    updated=setting.updated_at,
                )

        return ctx
