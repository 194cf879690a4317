"""Configuration loading from environment variables with validation."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

from newsdesk.errors import ConfigurationError

# Anchor all paths to the repository root (src/newsdesk/config.py -> root)
_ROOT_DIR = Path(__file__).resolve().parent.parent.parent


@dataclass(frozen=True)
class FolderConfig:
    """The four fixed remote folders projects live in."""

    active_sheets: str
    active_data: str
    archive_sheets: str
    archive_data: str


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="NEWSDESK_",
        case_sensitive=False,
    )

    # Google OAuth (loaded separately, no prefix)
    google_client_id: str = ""
    google_client_secret: str = ""
    google_refresh_token: str = ""

    # Template spreadsheet copied for every new project (no prefix)
    master_sheet_id: str = ""
    share_copies_public: bool = False

    # Workflow execution (no prefix)
    runchat_api_token: str = ""
    runchat_flow_id: str = ""

    # Article search (no prefix)
    event_registry_api_key: str = ""
    event_registry_sources_sheet_id: str = ""
    event_registry_sources_range: str = "Sheet1!A2:E"

    # Remote folders
    active_sheets_folder_id: str = ""
    active_data_folder_id: str = ""
    archive_sheets_folder_id: str = ""
    archive_data_folder_id: str = ""

    # Local project cache
    data_dir: Path = _ROOT_DIR / "data" / "projects"

    # HTTP
    http_timeout: float = 30.0

    # Article search paging
    event_registry_articles_per_page: int = 100
    event_registry_request_delay: float = 1.0
    event_registry_max_pages: int = 50

    # Sheet tabs
    analysis_tab: str = "Analysis"
    articles_tab: str = "Articles"

    # Logging
    log_level: str = "INFO"

    def folders(self) -> FolderConfig:
        """Return the remote folder ids, failing if any is unset."""
        missing = [
            name
            for name in (
                "active_sheets_folder_id",
                "active_data_folder_id",
                "archive_sheets_folder_id",
                "archive_data_folder_id",
            )
            if not getattr(self, name)
        ]
        if missing:
            env_names = ", ".join(f"NEWSDESK_{name.upper()}" for name in missing)
            raise ConfigurationError(f"Missing remote folder configuration: {env_names}")
        return FolderConfig(
            active_sheets=self.active_sheets_folder_id,
            active_data=self.active_data_folder_id,
            archive_sheets=self.archive_sheets_folder_id,
            archive_data=self.archive_data_folder_id,
        )


def get_settings() -> Settings:
    """Load settings from environment and .env file."""
    # Load .env from the repository root regardless of cwd
    load_dotenv(_ROOT_DIR / ".env")
    unprefixed = {
        "google_client_id": "GOOGLE_CLIENT_ID",
        "google_client_secret": "GOOGLE_CLIENT_SECRET",
        "google_refresh_token": "GOOGLE_REFRESH_TOKEN",
        "master_sheet_id": "MASTER_SHEET_ID",
        "share_copies_public": "SHARE_COPIES_PUBLIC",
        "runchat_api_token": "RUNCHAT_API_TOKEN",
        "runchat_flow_id": "RUNCHAT_FLOW_ID",
        "event_registry_api_key": "EVENT_REGISTRY_API_KEY",
        "event_registry_sources_sheet_id": "EVENT_REGISTRY_SOURCES_SHEET_ID",
        "event_registry_sources_range": "EVENT_REGISTRY_SOURCES_RANGE",
    }
    values = {
        field: os.environ[env_name]
        for field, env_name in unprefixed.items()
        if os.environ.get(env_name)
    }
    return Settings(**values)
