"""
Plugin Loader

Discovers plugins on disk by their `plugin.json`, works out signature state,
derives the URLs the frontend needs and reports plugins that must not be
loaded.  Nested plugins (a `plugin.json` below another plugin's directory)
inherit their parent's signature; those nested under an app are marked as
included in that app.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from plugin_server.plugins import signature
from plugin_server.plugins.models import PluginClass, PluginDef, SignatureStatus
from plugin_server.utils.slugify import slugify

if TYPE_CHECKING:
    from plugin_server.config import Settings

logger = logging.getLogger(__name__)

PLUGIN_JSON = "plugin.json"

_SIGNATURE_ERROR_CODES = {
    SignatureStatus.UNSIGNED: "signatureMissing",
    SignatureStatus.MODIFIED: "signatureModified",
    SignatureStatus.INVALID: "signatureInvalid",
}


@dataclass(frozen=True)
class PluginLoadError:
    plugin_id: str
    error_code: str


def find_plugin_json_files(path: Path) -> list[Path]:
    """Return every plugin.json below `path`, shallowest first."""
    if not path.is_dir():
        return []
    return sorted(path.rglob(PLUGIN_JSON), key=lambda p: (len(p.parts), str(p)))


def read_plugin_json(path: Path, plugin_class: PluginClass) -> PluginDef | None:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return PluginDef.from_json(data, plugin_dir=path.parent.resolve(), plugin_class=plugin_class)
    except (OSError, ValueError, TypeError) as e:
        logger.warning("Skipping invalid plugin definition %s: %s", path, e)
        return None


class PluginLoader:
    """Turns plugin directories into PluginDef records."""

    def __init__(self, settings: Settings):
        self.app_sub_url = settings.app_sub_url.rstrip("/")
        self.allow_unsigned = set(settings.allow_loading_unsigned_plugins)
        self.development = settings.is_development

    def load(self, path: Path, plugin_class: PluginClass) -> tuple[list[PluginDef], list[PluginLoadError]]:
        """Load every plugin below `path`.  Returns (loaded plugins, load errors)."""
        loaded: dict[Path, PluginDef] = {}
        rejected: set[Path] = set()
        errors: list[PluginLoadError] = []

        for json_path in find_plugin_json_files(path):
            plugin = read_plugin_json(json_path, plugin_class)
            if plugin is None:
                continue

            parent = self._find_parent(plugin.plugin_dir, loaded)
            if any(plugin.plugin_dir.is_relative_to(d) for d in rejected):
                logger.info("Skipping plugin %s nested in a rejected plugin", plugin.id)
                continue

            if parent is not None:
                self._inherit_signature(plugin, parent)
                if parent.is_app():
                    plugin.included_in_app_id = parent.id
            else:
                result = signature.calculate(plugin)
                plugin.signature = result.status
                plugin.signature_type = result.signature_type
                plugin.signature_org = result.signed_by_org_name
                plugin.signed_files = result.files if result.status == SignatureStatus.VALID else None

                error_code = self._signature_error(plugin)
                if error_code:
                    logger.warning("Plugin %s failed signature validation: %s", plugin.id, error_code)
                    errors.append(PluginLoadError(plugin_id=plugin.id, error_code=error_code))
                    rejected.add(plugin.plugin_dir)
                    continue

            self._set_urls(plugin)
            loaded[plugin.plugin_dir] = plugin
            logger.debug("Loaded plugin %s v%s from %s", plugin.id, plugin.version, plugin.plugin_dir)

        return list(loaded.values()), errors

    # ── Helpers ───────────────────────────────────────────────────────────────

    @staticmethod
    def _find_parent(plugin_dir: Path, loaded: dict[Path, PluginDef]) -> PluginDef | None:
        for ancestor in plugin_dir.parents:
            if ancestor in loaded:
                return loaded[ancestor]
        return None

    @staticmethod
    def _inherit_signature(plugin: PluginDef, parent: PluginDef) -> None:
        plugin.signature = parent.signature
        plugin.signature_type = parent.signature_type
        plugin.signature_org = parent.signature_org
        if parent.signed_files is not None:
            prefix = plugin.plugin_dir.relative_to(parent.plugin_dir).as_posix() + "/"
            plugin.signed_files = {f[len(prefix):] for f in parent.signed_files if f.startswith(prefix)}

    def _signature_error(self, plugin: PluginDef) -> str | None:
        if plugin.signature in (SignatureStatus.VALID, SignatureStatus.INTERNAL):
            return None
        if plugin.signature == SignatureStatus.UNSIGNED and (self.development or plugin.id in self.allow_unsigned):
            logger.warning("Loading unsigned plugin %s", plugin.id)
            return None
        return _SIGNATURE_ERROR_CODES.get(plugin.signature, "signatureInvalid")

    def _set_urls(self, plugin: PluginDef) -> None:
        if plugin.is_core():
            plugin.base_url = f"public/app/plugins/{plugin.type.value}/{plugin.id}"
            plugin.module = f"app/plugins/{plugin.type.value}/{plugin.id}/module"
        else:
            plugin.base_url = f"public/plugins/{plugin.id}"
            plugin.module = f"plugins/{plugin.id}/module"

        if not plugin.is_app():
            return

        for include in plugin.includes:
            if not include.default_nav:
                continue
            slug = include.slug or slugify(include.name)
            if include.type == "page":
                plugin.default_nav_url = f"{self.app_sub_url}/plugins/{plugin.id}/page/{slug}"
            elif include.type == "dashboard":
                if include.uid:
                    plugin.default_nav_url = f"{self.app_sub_url}/d/{include.uid}"
                else:
                    plugin.default_nav_url = f"{self.app_sub_url}/dashboard/db/{slug}"
            break
