"""Application configuration using pydantic-settings."""

from functools import lru_cache
from typing import Annotated, Any, List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


class Settings(BaseSettings):
    """Runtime configuration, read once from the environment (and .env)."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_ignore_empty=True,
        populate_by_name=True,
        extra="ignore",
    )

    # Credentials: GEMINI_API_KEYS (comma separated) merged with API_KEY, API_KEY_1..9
    api_keys: Annotated[List[str], NoDecode] = Field(
        default_factory=list,
        validation_alias="GEMINI_API_KEYS",
    )
    api_key: str = Field(default="", exclude=True)
    api_key_1: str = Field(default="", exclude=True)
    api_key_2: str = Field(default="", exclude=True)
    api_key_3: str = Field(default="", exclude=True)
    api_key_4: str = Field(default="", exclude=True)
    api_key_5: str = Field(default="", exclude=True)
    api_key_6: str = Field(default="", exclude=True)
    api_key_7: str = Field(default="", exclude=True)
    api_key_8: str = Field(default="", exclude=True)
    api_key_9: str = Field(default="", exclude=True)

    # Model
    model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")
    base_url: str = Field(default=DEFAULT_BASE_URL, validation_alias="GEMINI_BASE_URL")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    thinking_budget: Optional[int] = None

    # Memory
    memory_file: str = "nzt_memory_storage.json"
    save_debounce_seconds: float = Field(default=1.0, ge=0.0)
    max_history_entries: int = Field(default=40, ge=2)

    # Retry ladder
    call_timeout_seconds: float = Field(default=55.0, gt=0.0)
    attempts_per_key: int = Field(default=2, ge=1)
    backoff_short_seconds: float = Field(default=0.75, ge=0.0)
    backoff_long_seconds: float = Field(default=3.0, ge=0.0)
    backoff_max_seconds: float = Field(default=10.0, ge=0.0)

    # Turn handling
    absence_hours: float = Field(default=24.0, gt=0.0)
    max_message_chars: int = Field(default=4000, ge=1)

    # Server
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = Field(default=8421, ge=1, le=65535)

    @field_validator("api_keys", mode="before")
    @classmethod
    def split_keys(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.split(",")
        return value

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @model_validator(mode="after")
    def merge_keys(self) -> "Settings":
        raw = list(self.api_keys) + [self.api_key] + [getattr(self, f"api_key_{i}") for i in range(1, 10)]
        keys: List[str] = []
        for key in raw:
            key = key.strip()
            if key and key not in keys:
                keys.append(key)
        self.api_keys = keys
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
