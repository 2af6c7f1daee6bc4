"""Settings for the ACF coaching service, read from the environment and .env."""

from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import make_url


def find_project_root(start: Path | None = None) -> Path:
    """The directory holding pyproject.toml, whether started from backend/ or the root."""
    start = start or Path.cwd()
    for candidate in (start, *start.parents):
        if (candidate / "pyproject.toml").exists():
            return candidate
    return start


def absolute_sqlite_url(db_url: str, root: Path) -> str:
    """Anchor a relative SQLite file path at root; other URLs pass through."""
    url = make_url(db_url)
    database = url.database
    if url.get_backend_name() != "sqlite" or not database or database == ":memory:":
        return db_url
    path = Path(database)
    if path.is_absolute():
        return db_url
    return url.set(database=str(root / path)).render_as_string(hide_password=False)


PROJECT_ROOT = find_project_root()
ENV_FILE = PROJECT_ROOT / ".env" if (PROJECT_ROOT / ".env").exists() else Path(".env")


class Settings(BaseSettings):
    """Service settings. Every field can be overridden by an environment variable."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        extra="ignore",
        validate_default=True,
    )

    anthropic_api_key: str = ""

    # SQLite under <project root>/data unless overridden
    database_url: str = "sqlite+aiosqlite:///./data/acf_coach.db"

    @field_validator("database_url")
    @classmethod
    def _anchor_database_path(cls, value: str) -> str:
        return absolute_sqlite_url(value, PROJECT_ROOT)

    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    # Model Configuration
    model_coach: str = "claude-haiku-4-5"  # Turn-by-turn coaching replies
    model_summary: str = "claude-sonnet-4-5"  # End-of-session summary
    model_extraction: str = "claude-haiku-4-5"  # Action item JSON extraction
    model_timeout_seconds: float = 60.0

    coach_temperature: float = 0.8
    coach_max_tokens: int = 500
    summary_temperature: float = 0.7
    summary_max_tokens: int = 4000
    extraction_temperature: float = 0.3
    extraction_max_tokens: int = 2000

    # Stage progression. One deployment-wide threshold; the coach is told
    # to wrap up by the maximum.
    min_questions_per_stage: int = 8
    max_questions_per_stage: int = 15

    # Debounced transcript auto-save (quiet period after the last turn)
    autosave_delay_seconds: float = 2.0
    # Pause between saving the summary and extracting action items
    completion_settle_seconds: float = 1.0

    # CORS
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]


settings = Settings()
