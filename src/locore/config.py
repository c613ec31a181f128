from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Review store configuration loaded from environment variables."""

    review_dir_name: str = ".codereview"  # Review data directory, relative to the workspace root
    index_filename: str = "index.json"
    log_filename: str = "review.jsonl"
    author: str | None = None  # Overrides the OS user name recorded on comments
    lock_timeout: float = 5.0  # Seconds to wait for the per-directory write lock
    verbose: bool = False

    model_config = {
        "env_file": [".env"],
        "env_prefix": "LOCORE_",
        "extra": "ignore",
    }

    def review_dir(self, workspace_root: Path) -> Path:
        return workspace_root / self.review_dir_name


def get_settings(**overrides) -> Settings:
    """Build settings from the environment, applying explicit overrides."""
    return Settings(**overrides)
