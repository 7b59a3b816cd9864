"""
Admin-editable Discourse credentials.

Values saved through the settings endpoint are written to a small JSON
file and take precedence over the environment.
"""

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from country_directory.config import Settings
from country_directory.utils.logging import get_logger

logger = get_logger(__name__)


class DirectoryCredentials(BaseModel):
    """Connection settings for the remote forum."""
    api_url: str = ""
    api_key: Optional[str] = None
    api_username: str = "system"
    api_limit: Optional[int] = Field(default=None, ge=1, le=1000)

    @field_validator("api_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.strip().rstrip("/")

    @property
    def is_configured(self) -> bool:
        return bool(self.api_url and self.api_key)


def write_json_atomic(path: Path, payload: dict) -> None:
    """Write JSON next to ``path`` and rename it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, ensure_ascii=False)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


class CredentialStore:
    """Environment defaults overlaid with admin-saved values."""

    def __init__(self, settings: Settings, path: Optional[str] = None):
        self._settings = settings
        self.path = Path(path or settings.credentials_path)
        self._saved: Optional[DirectoryCredentials] = self._load()

    def _defaults(self) -> DirectoryCredentials:
        return DirectoryCredentials(
            api_url=self._settings.discourse_url,
            api_key=self._settings.discourse_api_key,
            api_username=self._settings.discourse_api_username,
            api_limit=self._settings.directory_page_size,
        )

    def _load(self) -> Optional[DirectoryCredentials]:
        if not self.path.exists():
            return None
        try:
            with self.path.open(encoding="utf-8") as fh:
                return DirectoryCredentials.model_validate(json.load(fh))
        except (OSError, ValueError, ValidationError) as e:
            logger.warning("Ignoring unreadable saved credentials", path=str(self.path), error=str(e))
            return None

    def current(self) -> DirectoryCredentials:
        """Credentials the next refresh will use."""
        if self._saved is None:
            return self._defaults()

        defaults = self._defaults()
        return DirectoryCredentials(
            api_url=self._saved.api_url or defaults.api_url,
            api_key=self._saved.api_key or defaults.api_key,
            api_username=self._saved.api_username or defaults.api_username,
            api_limit=self._saved.api_limit or defaults.api_limit,
        )

    @property
    def is_configured(self) -> bool:
        return self.current().is_configured

    def page_size(self) -> int:
        return self.current().api_limit or self._settings.directory_page_size

    async def save(self, credentials: DirectoryCredentials) -> None:
        """Persist new credentials; they apply from the next refresh on.
        The file write runs in a worker thread."""
        await asyncio.to_thread(write_json_atomic, self.path, credentials.model_dump())
        self._saved = credentials
        logger.info(
            "Directory credentials saved",
            api_url=credentials.api_url,
            api_username=credentials.api_username,
            api_limit=credentials.api_limit,
        )
