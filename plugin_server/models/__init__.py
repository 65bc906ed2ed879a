from .dashboard import Dashboard
from .plugin_setting import PluginSetting

__all__ = [
    "Dashboard",
    "PluginSetting",
]
