from functools import lru_cache
from pathlib import Path
from urllib.parse import urlsplit

from pydantic import field_validator
from pydantic_settings import BaseSettings

_ENV_FILE = Path(__file__).parent / ".env"


class Settings(BaseSettings):
    api_base_url: str = "http://localhost:8000"
    origin: str | None = None          # where asset URLs should point; defaults to the API origin
    request_timeout: float = 30.0      # seconds
    dedupe_ttl: float = 2.0            # seconds
    refresh_path: str = "/api/auth/refresh-token"
    csrf_path: str = "/sanctum/csrf-cookie"
    credentials_file: str = "credentials.json"

    model_config = {
        "env_prefix": "SESSION_CLIENT_",
        "env_file": str(_ENV_FILE),
        "env_file_encoding": "utf-8",
    }

    @field_validator("api_base_url", "origin")
    @classmethod
    def _strip_slash(cls, v: str | None) -> str | None:
        return v.strip().rstrip("/") if v else v

    @property
    def current_origin(self) -> str:
        if self.origin:
            return self.origin
        parts = urlsplit(self.api_base_url)
        return f"{parts.scheme}://{parts.netloc}"


@lru_cache
def get_settings() -> Settings:
    return Settings()
