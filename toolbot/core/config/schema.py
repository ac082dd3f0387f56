"""toolbot configuration schema — YAML + Pydantic + env override."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# ════════════════════════════════════════════════════════════
# SUB-CONFIGS (nested BaseModel)
# ════════════════════════════════════════════════════════════


class AgentConfig(BaseModel):
    """The conversational session served by this process."""

    name: str = "toolbot"
    session_id: str = "default"
    env: dict[str, str] = Field(default_factory=dict)


class SchedulerConfig(BaseModel):
    enabled: bool = True
    tick_interval_s: int = 30
    timezone: str = "UTC"  # cron evaluation
    history_limit: int = 20


# Tools
class WebhookToolConfig(BaseModel):
    url: str = ""
    timeout: float = 10.0


class ToolsConfig(BaseModel):
    webhook: WebhookToolConfig = Field(default_factory=WebhookToolConfig)


# Database
class DatabaseConfig(BaseModel):
    path: str = "data/toolbot.db"


# ════════════════════════════════════════════════════════════
# ROOT CONFIG (BaseSettings, env + .env support)
# ════════════════════════════════════════════════════════════


class Config(BaseSettings):
    """
    Root configuration.

    Priority: env vars > .env > YAML (init kwargs) > defaults

    Env override examples:
        TOOLBOT_AGENT__SESSION_ID=chat-42
        TOOLBOT_SCHEDULER__TICK_INTERVAL_S=5
        TOOLBOT_DATABASE__PATH=data/prod.db
    """

    model_config = SettingsConfigDict(
        env_prefix="TOOLBOT_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    agent: AgentConfig = Field(default_factory=AgentConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    @property
    def db_path(self) -> Path:
        return Path(self.database.path)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # YAML arrives as init kwargs; env and .env must win over it.
        return env_settings, dotenv_settings, init_settings, file_secret_settings
