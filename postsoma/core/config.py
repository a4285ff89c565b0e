from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigError(Exception):
    """Base configuration error."""


class MissingSettingError(ConfigError):
    """Raised when a driver starts without one of its required env vars."""

    def __init__(self, env_names: list[str]) -> None:
        super().__init__(f"missing required env: {', '.join(env_names)}")
        self.env_names = env_names


class Settings(BaseSettings):
    environment: str = "dev"
    tools_path: Path = Path("data/tools.jsonl")
    inbox_state_path: Path = Path("data/tg_state.json")
    notes_dir: Path = Path("notes")
    publish_statuses: list[str] = Field(default_factory=lambda: ["inbox"])
    publish_channel: str = "telegram"
    page_meta_timeout_seconds: float = 7.0
    http_timeout_seconds: float = 15.0
    user_agent: str = "PostSomaBot/1.0"

    tg_bot_token: str | None = Field(default=None, validation_alias="TG_BOT_TOKEN")
    inbox_chat_id: str | None = Field(default=None, validation_alias="INBOX_CHAT_ID")
    channel_chat_id: str | None = Field(default=None, validation_alias="CHANNEL_CHAT_ID")
    github_token: str | None = Field(default=None, validation_alias="GITHUB_TOKEN")
    github_repository: str | None = Field(default=None, validation_alias="GITHUB_REPOSITORY")
    issue_number: int | None = Field(default=None, validation_alias="ISSUE_NUMBER")
    gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
    gemini_model: str = Field(default="gemini-1.5-flash", validation_alias="GEMINI_MODEL")

    otel_enabled: bool = False
    otel_service_name: str = "postsoma"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="POSTSOMA_", extra="ignore", populate_by_name=True)

    def require(self, *field_names: str) -> None:
        missing = [
            _env_name(self, name)
            for name in field_names
            if getattr(self, name) in (None, "")
        ]
        if missing:
            raise MissingSettingError(missing)


def _env_name(settings: Settings, field_name: str) -> str:
    alias = type(settings).model_fields[field_name].validation_alias
    if isinstance(alias, str):
        return alias
    return f"POSTSOMA_{field_name.upper()}"


@lru_cache
def get_settings() -> Settings:
    return Settings()
