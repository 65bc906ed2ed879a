"""
Plugin Setting Model

Per-organization configuration of an installed plugin.
"""

from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, UniqueConstraint

from plugin_server.database import Base


class PluginSetting(Base):
    """
    Organization-scoped plugin settings.

    `secure_json_data` holds credentials and is write-only from the API's
    point of view: only its keys are ever exposed.
    """

    __tablename__ = "plugin_settings"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    org_id = Column(Integer, nullable=False, index=True)
    plugin_id = Column(String(190), nullable=False)

    enabled = Column(Boolean, default=False, nullable=False)
    pinned = Column(Boolean, default=False, nullable=False)
    json_data = Column(JSON, nullable=True)
    secure_json_data = Column(JSON, nullable=True)
    plugin_version = Column(String(50), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("org_id", "plugin_id", name="uq_plugin_settings_org_plugin"),)

    def __repr__(self) -> str:
        return f"<PluginSetting(org_id={self.org_id}, plugin_id={self.plugin_id}, enabled={self.enabled})>"

    def secure_json_fields(self) -> dict[str, bool]:
        """Keys of the stored secure data, each mapped to True."""
        return {key: True for key in (self.secure_json_data or {})}
