from pathlib import Path

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

_PACKAGE_DIR = Path(__file__).resolve().parent


class Settings(BaseSettings):
    # Application settings
    app_name: str = "Plugin Server"
    app_version: str = "1.0.0"
    debug: bool = False
    environment: str = "production"
    app_sub_url: str = ""

    # Database settings
    database_url: str = "sqlite+aiosqlite:///./data/plugin_server.db"
    auto_create_tables: bool = True

    # Security settings
    secret_key: str = "your_secret_key"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 30

    # Plugin settings
    plugins_dir: Path = Path("data/plugins")
    bundled_plugins_dir: Path = _PACKAGE_DIR / "plugins" / "core"
    plugins_enable_alpha: bool = False
    allow_loading_unsigned_plugins: list[str] = []
    plugin_catalog_url: str = "https://grafana.com/api/plugins"
    plugin_request_timeout: float = 30.0
    check_for_plugin_updates: bool = False
    backend_plugin_addresses: dict[str, str] = {}

    # Quota settings (-1 means unlimited)
    quota_org_dashboard: int = -1

    # Logging settings
    log_level: str = "INFO"
    log_json: bool = False
    log_file: str | None = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


settings = Settings()
