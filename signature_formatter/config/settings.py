"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


def _load_env_file(path: str = ".env") -> None:
    """Populate os.environ from the provided .env file if it exists."""

    env_path = Path(path)
    if not env_path.exists():
        return

    for line in env_path.read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())


@dataclass(frozen=True, slots=True)
class Settings:
    """Centralised project settings based on OS environment variables."""

    environment: str = "dev"
    log_level: str = "INFO"

    upload_dir: str = "uploads"
    temp_dir: str = "temp"
    output_dir: str = "output"

    # 4cm x 2cm print area at 96 DPI.
    signature_width_cm: float = 4.0
    signature_height_cm: float = 2.0
    pixels_per_cm: float = 37.7952755906

    min_bytes: int = 10 * 1024
    max_bytes: int = 20 * 1024
    initial_quality: int = 85
    quality_step: int = 5
    max_scale_factor: float = 4.0

    cleanup_grace_seconds: float = 5.0
    sweep_interval_seconds: float = 15 * 60
    file_max_age_seconds: float = 15 * 60
    delete_max_retries: int = 3
    delete_retry_delay_seconds: float = 1.0

    cors_origin: str = "https://ssc-signature-formatter.vercel.app"

    @property
    def managed_dirs(self) -> tuple[Path, Path, Path]:
        """Directories holding transient files, in pipeline order."""

        return Path(self.upload_dir), Path(self.temp_dir), Path(self.output_dir)


def _build_settings() -> Settings:
    _load_env_file()

    return Settings(
        environment=os.getenv("ENVIRONMENT", "dev"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        upload_dir=os.getenv("UPLOAD_DIR", "uploads"),
        temp_dir=os.getenv("TEMP_DIR", "temp"),
        output_dir=os.getenv("OUTPUT_DIR", "output"),
        signature_width_cm=float(os.getenv("SIGNATURE_WIDTH_CM", "4")),
        signature_height_cm=float(os.getenv("SIGNATURE_HEIGHT_CM", "2")),
        pixels_per_cm=float(os.getenv("PIXELS_PER_CM", "37.7952755906")),
        min_bytes=int(os.getenv("MIN_BYTES", str(10 * 1024))),
        max_bytes=int(os.getenv("MAX_BYTES", str(20 * 1024))),
        initial_quality=int(os.getenv("INITIAL_QUALITY", "85")),
        quality_step=int(os.getenv("QUALITY_STEP", "5")),
        max_scale_factor=float(os.getenv("MAX_SCALE_FACTOR", "4.0")),
        cleanup_grace_seconds=float(os.getenv("CLEANUP_GRACE_SECONDS", "5")),
        sweep_interval_seconds=float(os.getenv("SWEEP_INTERVAL_SECONDS", "900")),
        file_max_age_seconds=float(os.getenv("FILE_MAX_AGE_SECONDS", "900")),
        delete_max_retries=int(os.getenv("DELETE_MAX_RETRIES", "3")),
        delete_retry_delay_seconds=float(os.getenv("DELETE_RETRY_DELAY_SECONDS", "1")),
        cors_origin=os.getenv("CORS_ORIGIN", "https://ssc-signature-formatter.vercel.app"),
    )


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance to avoid re-reading configuration."""

    return _build_settings()
