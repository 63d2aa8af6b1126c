"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """chatmem configuration. All values come from environment variables."""

    # Anthropic
    anthropic_api_key: str = Field(default="")
    chat_model: str = Field(default="claude-sonnet-4-5-20250929")
    max_output_tokens: int = Field(default=4096)
    default_system_prompt: str = Field(default="You are a helpful assistant.")

    # History budget (approximate tokens) used when the client sends none
    default_max_tokens: int = Field(default=8000)

    # Database
    database_path: Path = Field(default=Path("data/chatmem.db"))

    # HTTP API
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8080)

    # Memory retrieval
    memory_retrieval_limit: int = Field(default=3)
    memory_min_score: float = Field(default=0.3)
    memory_candidate_messages: int = Field(default=20)

    # Rolling summary
    summary_max_length: int = Field(default=1000)

    # Memory extraction
    memory_extraction_enabled: bool = Field(default=True)

    # Conversations
    conversation_list_limit: int = Field(default=50)
    title_max_length: int = Field(default=40)

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)


settings = Settings()
