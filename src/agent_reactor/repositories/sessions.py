"""File-backed repository for session records."""

import asyncio
import os
import tempfile
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from agent_reactor.managers.identity_resolver import project_hash, validate_account
from agent_reactor.models.sessions import SessionRecord
from agent_reactor.utils import get_logger
from agent_reactor.utils.exceptions import SessionStoreError

logger = get_logger(__name__)

RECORD_SUFFIX = ".json"


class SessionRepository:
    """
    Stores one small JSON file per (account, project).

    Writes go to a temporary file in the same directory which is then
    renamed over the record, so readers only ever see a complete file.
    Records for different identities never share a file.
    """

    def __init__(self, state_dir: Path) -> None:
        """
        Initialize session repository.

        Args:
            state_dir: Directory holding record files
        """
        self.state_dir = Path(state_dir)

    def record_path(self, account: Optional[str], project_path: str) -> Path:
        """File that holds the record for an account and project."""
        account = validate_account(account)
        return self.state_dir / f"{account}-{project_hash(project_path)}{RECORD_SUFFIX}"

    async def get(self, account: Optional[str], project_path: str) -> Optional[SessionRecord]:
        """
        Load the record for an account and project.

        Returns:
            The record, or ``None`` if none was saved

        Raises:
            SessionStoreError: If the file exists but cannot be parsed
        """
        return await asyncio.to_thread(self._read, self.record_path(account, project_path))

    def _read(self, path: Path) -> Optional[SessionRecord]:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise SessionStoreError(str(path), f"unreadable: {e}")

        try:
            return SessionRecord.model_validate_json(raw)
        except ValidationError as e:
            raise SessionStoreError(str(path), f"corrupt record: {e.error_count()} errors")

    async def save(self, record: SessionRecord) -> Path:
        """
        Atomically write a record.

        Raises:
            SessionStoreError: If the record cannot be written
        """
        path = self.record_path(record.account, record.project_path)
        await asyncio.to_thread(self._write, path, record)
        logger.debug(
            "Session record saved",
            extra={"path": str(path), "container_name": record.container_name},
        )
        return path

    def _write(self, path: Path, record: SessionRecord) -> None:
        tmp_name = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{path.stem}.", suffix=".tmp", dir=str(path.parent)
            )
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(record.model_dump_json(indent=2))
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise SessionStoreError(str(path), f"write failed: {e}")

    async def delete(self, account: Optional[str], project_path: str) -> bool:
        """
        Delete the record for an account and project.

        Returns:
            True if a record was removed
        """
        path = self.record_path(account, project_path)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise SessionStoreError(str(path), f"delete failed: {e}")

        logger.info("Session record deleted", extra={"path": str(path)})
        return True

    async def list_all(self) -> List[SessionRecord]:
        """All readable records; unreadable files are skipped with a warning."""
        return await asyncio.to_thread(self._list_all)

    def _list_all(self) -> List[SessionRecord]:
        if not self.state_dir.is_dir():
            return []

        records: List[SessionRecord] = []
        for path in sorted(self.state_dir.glob(f"*{RECORD_SUFFIX}")):
            try:
                record = self._read(path)
            except SessionStoreError as e:
                logger.warning("Skipping unreadable session record", extra={"error": str(e)})
                continue
            if record is not None:
                records.append(record)
        return records
