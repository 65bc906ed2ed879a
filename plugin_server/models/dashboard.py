"""
Dashboard Model

Dashboards imported into an organization, either posted directly or shipped
inside an app plugin.
"""

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String

from plugin_server.database import Base


class Dashboard(Base):
    __tablename__ = "dashboards"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    org_id = Column(Integer, nullable=False, index=True)
    folder_id = Column(Integer, default=0, nullable=False)

    uid = Column(String(40), nullable=False)
    title = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False)
    data = Column(JSON, nullable=False)
    version = Column(Integer, default=1, nullable=False)

    # Set when the dashboard was imported from a plugin
    plugin_id = Column(String(190), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_dashboards_org_uid", "org_id", "uid", unique=True),
        Index("ix_dashboards_org_folder_title", "org_id", "folder_id", "title"),
        Index("ix_dashboards_org_plugin", "org_id", "plugin_id"),
    )

    def __repr__(self) -> str:
        return f"<Dashboard(id={self.id}, uid={self.uid}, title={self.title})>"

    @property
    def url(self) -> str:
        return f"/d/{self.uid}/{self.slug}"
