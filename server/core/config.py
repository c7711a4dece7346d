import sys

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Defines the application's configuration settings.

    Pydantic will automatically read from the environment or a .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    DATABASE_URL: str = "sqlite+aiosqlite:///./meetings.db"

    JWT_SECRET_KEY: str

    LOGGING_LEVEL: str = "INFO"

    # Public origin of this service; used for OAuth redirects and upload URLs
    APP_BASE_URL: str = "http://localhost:8000"

    # "cloud" or "local"
    TRANSLATION_MODE: str = "cloud"

    ENABLE_CLOUD_FALLBACK: bool = False

    CLOUD_API_KEY: str = ""

    CLOUD_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta/openai/"

    CLOUD_MODEL: str = "gemini-2.5-flash"

    OLLAMA_URL: str = "http://localhost:11434"

    OLLAMA_MODEL: str = "translategemma:4b"

    OLLAMA_API_KEY: str = ""

    REMOTE_TIMEOUT_SECONDS: float = 120.0

    STORAGE_DIR: str = "uploads"

    STORAGE_PUBLIC_URL: str = "/uploads"

    STORAGE_API_URL: str = ""

    STORAGE_API_KEY: str = ""

    OAUTH_AUTHORIZE_URL: str = ""

    OAUTH_TOKEN_URL: str = ""

    OAUTH_USERINFO_URL: str = ""

    OAUTH_CLIENT_ID: str = ""

    OAUTH_CLIENT_SECRET: str = ""

    OAUTH_SCOPE: str = "openid email profile"


try:
    settings = Settings()

except Exception as e:
    print(f"FATAL: Failed to load application settings: {e}", file=sys.stderr)
    sys.exit("Failed to load configuration. Exiting.")
