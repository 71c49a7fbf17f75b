"""Settings via pydantic-settings with DUCKLING_ env prefix.

Balance knobs for the pet live in the nested ``life`` policy and are read
from ``DUCKLING_LIFE__<FIELD>`` (for example ``DUCKLING_LIFE__NEGLECT_WINDOW_HOURS``).
The OpenAI key may come from the unprefixed OPENAI_API_KEY; a key saved
through the settings endpoint takes precedence at runtime.
"""

from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from duckling.pet.schemas import LifePolicy


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="DUCKLING_",
        env_file=".env",
        env_nested_delimiter="__",
    )

    # Storage
    db_url: str = "sqlite+aiosqlite:///duckling.db"
    log_level: str = "info"

    # Runtime
    host: str = "127.0.0.1"
    port: int = 8765

    # Chat completion service
    openai_api_key: str = Field("", validation_alias="OPENAI_API_KEY")
    api_base_url: str = "https://api.openai.com"
    model: str = "gpt-4.1-nano"
    max_tokens: int = 150
    temperature: float = 0.7
    api_timeout_connect: int = 10  # seconds
    api_timeout_read: int = 60  # seconds

    # Conversation
    history_limit: int = 30
    message_max_length: int = 50
    default_language: Literal["en_US", "pt_BR"] = "en_US"

    # Scheduler cadences (seconds)
    status_tick_interval: float = 30.0
    auto_comment_min_delay: float = 600.0
    auto_comment_max_delay: float = 1200.0
    cleanup_interval: float = 86400.0
    screenshot_retention: float = 86400.0
    screenshot_dir: str = "screenshots"
    archive_screenshots: bool = False

    # Pet balance
    life: LifePolicy = LifePolicy()

    @model_validator(mode="after")
    def _validate_cadence(self) -> "Settings":
        if self.auto_comment_min_delay > self.auto_comment_max_delay:
            raise ValueError(
                f"auto_comment_min_delay ({self.auto_comment_min_delay}) must be <= "
                f"auto_comment_max_delay ({self.auto_comment_max_delay})"
            )
        if self.status_tick_interval <= 0:
            raise ValueError("status_tick_interval must be > 0")
        if self.history_limit < 1:
            raise ValueError("history_limit must be >= 1")
        return self
