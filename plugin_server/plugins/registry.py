"""
Plugin Registry

In-process store of installed plugins.  Core plugins are loaded from the
bundled directory shipped with the server, external plugins from the
configured plugins directory.  The registry also owns install / uninstall so
the on-disk state and the in-memory index never drift apart.
"""

from __future__ import annotations

import logging
import shutil
from typing import TYPE_CHECKING

from plugin_server.plugins.errors import (
    DuplicatePluginError,
    InstallCorePluginError,
    PluginError,
    PluginNotInstalledError,
    UninstallCorePluginError,
    UninstallOutsideOfPluginDirError,
)
from plugin_server.plugins.installer import PluginInstaller, plugin_install_dir
from plugin_server.plugins.loader import PluginLoader
from plugin_server.plugins.models import PluginClass

if TYPE_CHECKING:
    from pathlib import Path

    from plugin_server.config import Settings
    from plugin_server.plugins.loader import PluginLoadError
    from plugin_server.plugins.models import PluginDef

logger = logging.getLogger(__name__)


class PluginRegistry:
    """
    Registry of installed plugins, keyed by plugin id.

    Registration order is preserved; the first plugin registered under an id
    wins, so core plugins cannot be shadowed by external ones.
    """

    def __init__(self, loader: PluginLoader, installer: PluginInstaller, plugins_dir: Path, bundled_dir: Path) -> None:
        self.loader = loader
        self.installer = installer
        self.plugins_dir = plugins_dir
        self.bundled_dir = bundled_dir
        self._plugins: dict[str, PluginDef] = {}
        self._errors: dict[str, PluginLoadError] = {}

    # ── Registration ──────────────────────────────────────────────────────────

    def register(self, plugin: PluginDef) -> bool:
        """Register a plugin.  Returns False if the id is already taken."""
        existing = self._plugins.get(plugin.id)
        if existing is not None:
            logger.warning(
                "Skipping plugin %s from %s: already registered from %s",
                plugin.id,
                plugin.plugin_dir,
                existing.plugin_dir,
            )
            return False
        self._plugins[plugin.id] = plugin
        self._errors.pop(plugin.id, None)
        logger.info("Plugin registered: %s v%s (%s)", plugin.id, plugin.version, plugin.plugin_class.value)
        return True

    def unregister(self, plugin_id: str) -> None:
        """Remove a plugin and every plugin nested in its directory."""
        plugin = self._plugins.pop(plugin_id, None)
        if plugin is None:
            return
        nested = [p.id for p in self._plugins.values() if p.plugin_dir.is_relative_to(plugin.plugin_dir)]
        for child_id in nested:
            del self._plugins[child_id]
        logger.info("Plugin unregistered: %s", plugin_id)

    def _record(self, plugins: list[PluginDef], errors: list[PluginLoadError]) -> None:
        for plugin in plugins:
            self.register(plugin)
        for error in errors:
            self._errors[error.plugin_id] = error

    async def load_all(self) -> None:
        """Load core plugins, then external plugins."""
        self._record(*self.loader.load(self.bundled_dir, PluginClass.CORE))
        self._record(*self.loader.load(self.plugins_dir, PluginClass.EXTERNAL))
        logger.info("Plugin initialisation complete: %d plugins loaded, %d errors", len(self._plugins), len(self._errors))

    # ── Lookup ────────────────────────────────────────────────────────────────

    def plugin(self, plugin_id: str) -> PluginDef | None:
        """Return the plugin with the given id, or None if not installed."""
        return self._plugins.get(plugin_id)

    def plugins(self) -> list[PluginDef]:
        """Return all installed plugins in registration order."""
        return list(self._plugins.values())

    def is_registered(self, plugin_id: str) -> bool:
        return plugin_id in self._plugins

    def plugin_errors(self) -> list[PluginLoadError]:
        """Return the plugins that were found on disk but refused at load time."""
        return list(self._errors.values())

    # ── Install / uninstall ───────────────────────────────────────────────────

    async def add(self, plugin_id: str, version: str = "") -> PluginDef:
        """
        Install a plugin from the catalog, or move an external plugin to another version.

        Raises:
            InvalidPluginIdError:   plugin_id cannot name a directory in plugins_dir.
            InstallCorePluginError: plugin_id names a core plugin.
            DuplicatePluginError:   the requested version is already installed.
            PluginError:            the installed package could not be loaded.
        """
        plugin_install_dir(plugin_id, self.plugins_dir)

        existing = self.plugin(plugin_id)
        if existing is not None:
            if existing.is_core():
                raise InstallCorePluginError(plugin_id)
            if version and existing.version == version:
                raise DuplicatePluginError(plugin_id, str(existing.plugin_dir))

        plugin_dir = await self.installer.install(plugin_id, version, self.plugins_dir)

        self.unregister(plugin_id)
        plugins, errors = self.loader.load(plugin_dir, PluginClass.EXTERNAL)
        self._record(plugins, errors)

        installed = self.plugin(plugin_id)
        if installed is None:
            codes = ", ".join(e.error_code for e in errors) or "no plugin.json with a matching id"
            shutil.rmtree(plugin_dir, ignore_errors=True)
            raise PluginError(f"plugin {plugin_id} was downloaded but could not be loaded: {codes}")

        logger.info("Plugin installed: %s v%s", plugin_id, installed.version)
        return installed

    async def remove(self, plugin_id: str) -> None:
        """
        Uninstall an external plugin and delete its directory.

        Raises:
            PluginNotInstalledError:          unknown plugin_id.
            UninstallCorePluginError:         plugin_id names a core plugin.
            UninstallOutsideOfPluginDirError: the plugin lives outside plugins_dir.
        """
        plugin = self.plugin(plugin_id)
        if plugin is None:
            raise PluginNotInstalledError(plugin_id)
        if plugin.is_core():
            raise UninstallCorePluginError(plugin_id)

        plugins_root = self.plugins_dir.resolve()
        if plugin.plugin_dir == plugins_root or not plugin.plugin_dir.is_relative_to(plugins_root):
            raise UninstallOutsideOfPluginDirError(plugin_id, str(plugin.plugin_dir))

        self.unregister(plugin_id)
        shutil.rmtree(plugin.plugin_dir)
        logger.info("Plugin uninstalled: %s", plugin_id)

    async def refresh_catalog_versions(self) -> None:
        """Ask the catalog for the latest version of each external plugin."""
        try:
            await self.installer.check_for_updates(self.plugins())
        except PluginError as e:
            logger.warning("Plugin update check failed: %s", e)


def create_plugin_registry(settings: Settings) -> PluginRegistry:
    """Wire a registry from application settings.  Plugins are not loaded yet."""
    return PluginRegistry(
        loader=PluginLoader(settings),
        installer=PluginInstaller(settings.plugin_catalog_url, timeout=settings.plugin_request_timeout),
        plugins_dir=settings.plugins_dir,
        bundled_dir=settings.bundled_plugins_dir,
    )
