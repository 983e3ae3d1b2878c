"""Server configuration for the spec companion service."""

import os
import tempfile
from pathlib import Path


class ServerConfig:
    """Environment-driven server configuration."""

    # Server settings
    HOST: str = os.getenv("HOST", "127.0.0.1")
    PORT: int = int(os.getenv("PORT", "8000"))
    WORKERS: int = int(os.getenv("WORKERS", "1"))  # Execution jobs live in process memory
    KEEP_ALIVE_TIMEOUT: int = int(os.getenv("KEEP_ALIVE_TIMEOUT", "65"))
    TIMEOUT_GRACEFUL_SHUTDOWN: int = int(os.getenv("TIMEOUT_GRACEFUL_SHUTDOWN", "30"))
    LOG_LEVEL: str = os.getenv("SPEC_COMPANION_LOG_LEVEL", "INFO").upper()
    # Database settings
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./spec_companion.db")
    DB_POOL_SIZE: int = int(os.getenv("DB_POOL_SIZE", "20"))
    DB_MAX_OVERFLOW: int = int(os.getenv("DB_MAX_OVERFLOW", "30"))
    DB_POOL_TIMEOUT: int = int(os.getenv("DB_POOL_TIMEOUT", "30"))
    DB_POOL_RECYCLE: int = int(os.getenv("DB_POOL_RECYCLE", "3600"))
    # User settings file (api key, defaults, timeouts)
    SETTINGS_PATH: Path = Path(
        os.getenv("SPEC_COMPANION_SETTINGS", str(Path.home() / ".spec_companion" / "settings.yaml"))
    ).expanduser()
    # Where generated tests without a saved file_path are materialized for a run
    TEST_TEMP_DIR: Path = Path(
        os.getenv("SPEC_COMPANION_TEMP_DIR", str(Path(tempfile.gettempdir()) / "spec-companion-tests"))
    )
    # CORS settings - Allow all origins for local UI development
    CORS_ORIGINS: list = ["*"]

    @classmethod
    def get_uvicorn_config(cls) -> dict:
        """Get uvicorn configuration for a regular run."""
        return {
            "host": cls.HOST,
            "port": cls.PORT,
            "workers": cls.WORKERS,
            "timeout_keep_alive": cls.KEEP_ALIVE_TIMEOUT,
            "timeout_graceful_shutdown": cls.TIMEOUT_GRACEFUL_SHUTDOWN,
            "access_log": True,
            "log_level": cls.LOG_LEVEL.lower(),
        }

    @classmethod
    def get_development_config(cls) -> dict:
        """Get uvicorn configuration for development."""
        return {
            "host": cls.HOST,
            "port": cls.PORT,
            "reload": True,
            "reload_dirs": ["spec_companion"],
            "log_level": "debug",
            "access_log": True,
        }
