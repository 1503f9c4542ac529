"""
Application settings.

Values come from the environment (or a local ``.env``) using the upper-case
field names, e.g. ``APP_PORT=5051`` or ``RUNNER_HEADED=false``.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server
    APP_HOST: str = "127.0.0.1"
    APP_PORT: int = 5050
    APP_DEBUG: bool = False
    APP_RELOAD: bool = False
    CORS_ORIGINS: list[str] = Field(
        default_factory=lambda: ["http://127.0.0.1:5050", "http://localhost:5050"]
    )

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    LOG_FILE: str | None = None

    # Test discovery
    PROJECT_ROOT: Path = Field(default_factory=Path.cwd)
    TESTS_DIR: Path | None = None
    SPEC_HEADER_LINES: int = 30
    EXAMPLE_SPEC: str = "tests/2. Regression/10-navigation.spec.js"

    # Runs
    DEFAULT_BASE_DOMAIN: str = "app.bullet-ai.com"
    MAX_LOG_LINES: int = 2000
    RUNNER_EXECUTABLE: str = "npx"
    RUNNER_HEADED: bool = True
    RUNNER_REPORTER: str = "line"
    ECHO_CHILD_OUTPUT: bool = True
    # How long to keep reading output once the child has exited; a grandchild
    # holding the pipes open must not keep the run alive.
    OUTPUT_DRAIN_SECONDS: float = 2.0

    @property
    def tests_dir(self) -> Path:
        if self.TESTS_DIR is not None:
            return self.TESTS_DIR
        return self.PROJECT_ROOT / "tests"


settings = Settings()
