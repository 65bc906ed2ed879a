"""
Plugin subsystem errors.

These are raised by the registry, installer, backend client and dashboard
manager.  They carry no HTTP semantics; routes decide how each one is
reported to the client.
"""

from __future__ import annotations


class PluginError(Exception):
    """Base class for plugin subsystem errors."""


# ── Lookup ────────────────────────────────────────────────────────────────────


class PluginNotFoundError(PluginError):
    def __init__(self, plugin_id: str):
        self.plugin_id = plugin_id
        super().__init__(f"plugin with ID '{plugin_id}' not found")


class PluginSettingNotFoundError(PluginError):
    def __init__(self, plugin_id: str, org_id: int):
        self.plugin_id = plugin_id
        self.org_id = org_id
        super().__init__(f"plugin setting for '{plugin_id}' not found in org {org_id}")


# ── Install / uninstall ───────────────────────────────────────────────────────


class DuplicatePluginError(PluginError):
    def __init__(self, plugin_id: str, existing_dir: str | None = None):
        self.plugin_id = plugin_id
        self.existing_dir = existing_dir
        super().__init__(f"plugin with ID '{plugin_id}' already exists in '{existing_dir}'")


class PluginNotInstalledError(PluginError):
    def __init__(self, plugin_id: str):
        self.plugin_id = plugin_id
        super().__init__(f"plugin '{plugin_id}' is not installed")


class InstallCorePluginError(PluginError):
    def __init__(self, plugin_id: str):
        self.plugin_id = plugin_id
        super().__init__(f"cannot install or change core plugin '{plugin_id}'")


class UninstallCorePluginError(PluginError):
    def __init__(self, plugin_id: str):
        self.plugin_id = plugin_id
        super().__init__(f"cannot uninstall core plugin '{plugin_id}'")


class UninstallOutsideOfPluginDirError(PluginError):
    def __init__(self, plugin_id: str, plugin_dir: str):
        self.plugin_id = plugin_id
        self.plugin_dir = plugin_dir
        super().__init__(f"cannot uninstall plugin '{plugin_id}' located outside of the plugins directory: {plugin_dir}")


class VersionNotFoundError(PluginError):
    def __init__(self, plugin_id: str, requested_version: str):
        self.plugin_id = plugin_id
        self.requested_version = requested_version
        super().__init__(f"{plugin_id} v{requested_version} either does not exist or is not supported on your system")


class VersionUnsupportedError(PluginError):
    def __init__(self, plugin_id: str, requested_version: str, system_info: str):
        self.plugin_id = plugin_id
        self.requested_version = requested_version
        self.system_info = system_info
        super().__init__(f"{plugin_id} v{requested_version} is not supported on your system ({system_info})")


class CatalogResponseError(PluginError):
    """The plugin catalog answered with a 4xx status."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"{status_code}: {message}")


class InvalidPluginIdError(PluginError):
    def __init__(self, plugin_id: str):
        self.plugin_id = plugin_id
        super().__init__(f"'{plugin_id}' is not a valid plugin id")


class InvalidPluginArchiveError(PluginError):
    pass


# ── Backend plugins ───────────────────────────────────────────────────────────


class PluginNotRegisteredError(PluginError):
    def __init__(self, plugin_id: str = ""):
        self.plugin_id = plugin_id
        super().__init__(f"plugin '{plugin_id}' not registered")


class MethodNotImplementedError(PluginError):
    def __init__(self, method: str = ""):
        self.method = method
        super().__init__(f"method '{method}' not implemented")


class HealthCheckFailedError(PluginError):
    def __init__(self, plugin_id: str = "", reason: str = ""):
        self.plugin_id = plugin_id
        super().__init__(f"health check of plugin '{plugin_id}' failed: {reason}")


class PluginUnavailableError(PluginError):
    def __init__(self, plugin_id: str = "", reason: str = ""):
        self.plugin_id = plugin_id
        super().__init__(f"plugin '{plugin_id}' unavailable: {reason}")


# ── Dashboards ────────────────────────────────────────────────────────────────


class DashboardError(PluginError):
    pass


class DashboardNotFoundError(DashboardError):
    def __init__(self, message: str = "Dashboard not found"):
        super().__init__(message)


class DashboardWithSameNameExistsError(DashboardError):
    def __init__(self, title: str):
        self.title = title
        super().__init__(f"A dashboard with the same name '{title}' in the folder already exists")


class DashboardWithSameUIDExistsError(DashboardError):
    def __init__(self, uid: str):
        self.uid = uid
        super().__init__(f"A dashboard with the same uid '{uid}' already exists")


class DashboardVersionMismatchError(DashboardError):
    def __init__(self):
        super().__init__("The dashboard has been changed by someone else")


class DashboardInputMissingError(DashboardError):
    def __init__(self, variable: str):
        self.variable = variable
        super().__init__(f"Dashboard input variable '{variable}' is missing from the import request")


class InvalidDashboardPathError(DashboardError):
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Dashboard path '{path}' is outside of the plugin directory")


class DashboardTitleEmptyError(DashboardError):
    def __init__(self):
        super().__init__("Dashboard title cannot be empty")
