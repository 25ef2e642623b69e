# nanochat/core/config.py
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Client-side settings, read from the environment and `.env`"""
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Remote backend
    API_BASE_URL: str = Field("https://t3.0xgingi.xyz")
    API_KEY: str = Field("")
    REQUEST_TIMEOUT: float = Field(30.0, gt=0)

    # Local store
    DATABASE_URL: str = Field("sqlite+aiosqlite:///./nanochat.db")

    # Generation polling
    GENERATION_POLL_INTERVAL: float = Field(1.0, ge=0)
    GENERATION_POLL_ATTEMPTS: int = Field(120, ge=1)

    # Local access API
    SERVER_HOST: str = Field("127.0.0.1")
    SERVER_PORT: int = Field(8765)

    # Logging
    LOG_LEVEL: str = Field("INFO")
    LOG_FILE: str = Field("")

    @property
    def base_url(self) -> str:
        return self.API_BASE_URL.rstrip("/")

    def auth_headers(self) -> dict:
        if not self.API_KEY:
            return {}
        return {"Authorization": f"Bearer {self.API_KEY}"}


settings = Settings()
