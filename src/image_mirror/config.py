"""Configuration management for image-mirror."""

from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MIRROR_DIR_NAME = "mirror"
STATUS_FILE_NAME = "watch-status.json"
LOG_FILE_NAME = "image-mirror.log"

# Only these extensions are ever discovered, watched or mirrored
ACCEPTED_EXTENSIONS = (".jpg", ".jpeg")


class MirrorConfig(BaseSettings):
    """Configuration for a repository mirror."""

    # Default to ~/.image-mirror but allow override with env var
    home: Path = Field(
        default_factory=lambda: Path.home() / ".image-mirror",
        description="Base path for image-mirror state files",
    )

    repository_path: Optional[Path] = Field(
        default=None, description="Source image repository, possibly on a network share"
    )
    mirror_path: Optional[Path] = Field(
        default=None, description="Local mirror directory (defaults to <home>/mirror)"
    )

    # Batching
    discovery_batch_size: int = Field(default=50, gt=0)
    sync_batch_size: int = Field(default=10, gt=0)

    # Timing, all in milliseconds
    sync_delay: int = Field(
        default=2000, ge=0, description="Debounce window before a triggered sync runs"
    )
    polling_interval: int = Field(default=5000, gt=0)
    watch_debounce: int = Field(
        default=500, ge=0, description="Time watchfiles waits for writes to settle"
    )

    # Poller sampling
    poll_sample_size: int = Field(default=50, gt=0)
    hash_chunk_size: int = Field(default=64 * 1024, gt=0)

    # Native notifications are unreliable on network shares
    force_polling: bool = False

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="IMAGE_MIRROR_",
        extra="ignore",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    @property
    def mirror_dir(self) -> Path:
        """Get mirror directory path."""
        return self.mirror_path or self.home / MIRROR_DIR_NAME

    @property
    def status_path(self) -> Path:
        """Get watch status file path."""
        return self.home / STATUS_FILE_NAME

    @property
    def log_path(self) -> Path:
        return self.home / LOG_FILE_NAME

    @field_validator("home")
    @classmethod
    def ensure_path_exists(cls, v: Path) -> Path:
        """Ensure home path exists."""
        if not v.exists():
            v.mkdir(parents=True)
        return v


def get_config() -> MirrorConfig:
    return MirrorConfig()
