import logging
import os
from dataclasses import dataclass, field
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # Application
    app_name: str = field(default_factory=lambda: os.getenv("APP_NAME", "Personal Library API"))
    app_version: str = field(default_factory=lambda: os.getenv("APP_VERSION", "1.0.0"))
    environment: str = field(default_factory=lambda: os.getenv("ENVIRONMENT", "development"))
    debug: bool = field(default_factory=lambda: _env_bool("DEBUG", "False"))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    # API
    api_host: str = field(default_factory=lambda: os.getenv("API_HOST", "127.0.0.1"))
    api_port: int = field(default_factory=lambda: int(os.getenv("API_PORT", "4000")))

    # Database
    database_file: str = field(default_factory=lambda: os.getenv("LIBRARY_DB_FILE", "library.db"))

    # Sessions
    session_cookie_name: str = field(default_factory=lambda: os.getenv("SESSION_COOKIE_NAME", "sid"))
    session_ttl_seconds: int = field(default_factory=lambda: int(os.getenv("SESSION_TTL_SECONDS", "604800")))  # 7 days
    session_cookie_secure: bool = field(default_factory=lambda: _env_bool("SESSION_COOKIE_SECURE", "False"))
    # 'none' requires session_cookie_secure when the frontend lives on another domain
    session_cookie_samesite: str = field(default_factory=lambda: os.getenv("SESSION_COOKIE_SAMESITE", "lax"))

    # Passwords
    password_hash_rounds: int = field(default_factory=lambda: int(os.getenv("PASSWORD_HASH_ROUNDS", "12")))

    # Frontend / OAuth
    client_url: str = field(default_factory=lambda: os.getenv("CLIENT_URL", "http://localhost:5173"))
    backend_base_url: str = field(default_factory=lambda: os.getenv("BACKEND_BASE_URL", "http://localhost:4000"))
    google_client_id: Optional[str] = field(default_factory=lambda: os.getenv("GOOGLE_CLIENT_ID"))
    google_client_secret: Optional[str] = field(default_factory=lambda: os.getenv("GOOGLE_CLIENT_SECRET"))

    # Open Library
    openlibrary_search_url: str = field(
        default_factory=lambda: os.getenv("OPENLIBRARY_SEARCH_URL", "https://openlibrary.org/search.json")
    )
    openlibrary_timeout: float = field(default_factory=lambda: float(os.getenv("OPENLIBRARY_TIMEOUT", "10")))
    openlibrary_default_query: str = field(default_factory=lambda: os.getenv("OPENLIBRARY_DEFAULT_QUERY", "javascript"))

    @property
    def google_enabled(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret)

    @property
    def google_callback_url(self) -> str:
        return f"{self.backend_base_url.rstrip('/')}/auth/google/callback"

    @classmethod
    def from_env(cls) -> "Settings":
        """Re-read every field from the current environment."""
        return cls()


settings = Settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Install the root log handler once for the API and CLI entry points."""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
