import json
import shutil
from pathlib import Path
from typing import Optional

from zapbot.logging_config import get_logger

logger = get_logger("auth_store")

CREDENTIALS_FILE = "creds.json"


class FileAuthStore:
    """Transport credentials kept as JSON inside a dedicated directory."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    @property
    def path(self) -> Path:
        return self.directory / CREDENTIALS_FILE

    def ensure_directory(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)

    def load(self) -> Optional[dict]:
        """Stored credentials, or None when nothing usable is on disk."""
        self.ensure_directory()
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable credentials file: {e}")
            return None
        return data if isinstance(data, dict) and data else None

    def save(self, credentials: dict) -> None:
        """Merge and write atomically so a crash never leaves a half-written file."""
        self.ensure_directory()
        current = self.load() or {}
        current.update(credentials or {})
        tmp_path = self.path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(current, ensure_ascii=False), encoding="utf-8")
        tmp_path.replace(self.path)

    def clear(self) -> None:
        try:
            shutil.rmtree(self.directory)
            logger.info("Credential directory removed", extra={"context": {"path": str(self.directory)}})
        except FileNotFoundError:
            pass
