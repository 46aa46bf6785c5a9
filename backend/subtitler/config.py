"""Configuration management for the subtitle service."""

import os
from pathlib import Path


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """Application settings loaded from environment variables."""

    # Paths
    UPLOAD_DIR: str = os.getenv("UPLOAD_DIR", "/app/uploads")
    OUTPUT_DIR: str = os.getenv("OUTPUT_DIR", "/app/uploads/srt")
    TEMP_DIR: str = os.getenv("TEMP_DIR", "/app/uploads/temp")
    DATABASE_PATH: str = os.getenv("DATABASE_PATH", "/app/data/app.db")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Database
    DATABASE_URL: str = f"sqlite+aiosqlite:///{DATABASE_PATH}"

    # Queue
    QUEUE_CONCURRENCY: int = int(os.getenv("QUEUE_CONCURRENCY", "2"))
    QUEUE_RATE_LIMIT: int = int(os.getenv("QUEUE_RATE_LIMIT", "5"))
    QUEUE_RATE_INTERVAL: float = float(os.getenv("QUEUE_RATE_INTERVAL", "1.0"))
    SHUTDOWN_GRACE_SECONDS: float = float(os.getenv("SHUTDOWN_GRACE_SECONDS", "30"))

    # Maintenance
    RETENTION_DAYS: int = int(os.getenv("RETENTION_DAYS", "30"))
    RETENTION_SWEEP_INTERVAL: float = float(os.getenv("RETENTION_SWEEP_INTERVAL", str(6 * 3600)))
    STALE_PROCESSING_MINUTES: int = int(os.getenv("STALE_PROCESSING_MINUTES", "0"))

    # Transcription
    DEFAULT_LANGUAGE: str = os.getenv("DEFAULT_LANGUAGE", "en")
    FORCE_PRIMARY_PROVIDER: bool = _env_bool("FORCE_PRIMARY_PROVIDER")
    PROVIDER_TIMEOUT: float = float(os.getenv("PROVIDER_TIMEOUT", "600"))

    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
    OPENAI_BASE_URL: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "whisper-1")

    DEEPGRAM_API_KEY: str = os.getenv("DEEPGRAM_API_KEY", "")
    DEEPGRAM_BASE_URL: str = os.getenv("DEEPGRAM_BASE_URL", "https://api.deepgram.com/v1")
    DEEPGRAM_MODEL: str = os.getenv("DEEPGRAM_MODEL", "whisper")

    # Media tools
    FFMPEG_BINARY: str = os.getenv("FFMPEG_BINARY", "ffmpeg")
    FFPROBE_BINARY: str = os.getenv("FFPROBE_BINARY", "ffprobe")

    # Public base for produced subtitle files
    OUTPUT_PUBLIC_URL: str = os.getenv("OUTPUT_PUBLIC_URL", "/subtitles")

    # CORS
    CORS_ORIGINS: list = os.getenv("CORS_ORIGINS", "*").split(",")

    @classmethod
    def ensure_directories(cls):
        """Ensure required directories exist and clean temp directory."""
        import shutil
        import logging

        logger = logging.getLogger(__name__)

        # Clean temp directory on startup (remove orphaned audio/srt from previous runs)
        temp_path = Path(cls.TEMP_DIR)
        if temp_path.exists():
            try:
                for item in temp_path.iterdir():
                    if item.is_file():
                        item.unlink()
                        logger.info(f"Cleaned orphaned temp file: {item.name}")
                    elif item.is_dir():
                        shutil.rmtree(item)
                        logger.info(f"Cleaned orphaned temp directory: {item.name}")
                logger.info("Temp directory cleaned on startup")
            except Exception as e:
                logger.error(f"Error cleaning temp directory: {e}")

        temp_path.mkdir(parents=True, exist_ok=True)
        Path(cls.UPLOAD_DIR).mkdir(parents=True, exist_ok=True)
        Path(cls.OUTPUT_DIR).mkdir(parents=True, exist_ok=True)
        Path(cls.DATABASE_PATH).parent.mkdir(parents=True, exist_ok=True)


settings = Settings()
