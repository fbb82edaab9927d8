"""Atomic file I/O for the gateway's JSON stores.

Uses per-path asyncio locks + the temp-rename pattern so readers never
observe a partially written file.  Single writing process assumed; there
is no cross-process locking.
"""

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Any

from loguru import logger


def read_json(path: Path, fallback: Any) -> Any:
    """Load JSON from *path*, returning *fallback* if missing or unreadable."""
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return fallback
    except (OSError, ValueError) as exc:
        logger.warning(f"Failed to read {path}: {exc}")
        return fallback


def write_text_atomic(
    path: Path,
    content: str,
    *,
    file_mode: int | None = None,
    dir_mode: int = 0o755,
    encoding: str = "utf-8",
) -> None:
    """Write *content* to a temp file beside *path*, then rename over it.

    Raises ``OSError`` on failure; the temp file is removed first.
    """
    path.parent.mkdir(parents=True, exist_ok=True, mode=dir_mode)
    fd, temp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    try:
        try:
            os.write(fd, content.encode(encoding))
        finally:
            os.close(fd)
        if file_mode is not None:
            os.chmod(temp_path, file_mode)
        Path(temp_path).replace(path)
    except OSError:
        Path(temp_path).unlink(missing_ok=True)
        raise


class AtomicFileWriter:
    """Async-safe atomic file writer.

    Concurrent writes to the same path are serialized via per-path asyncio
    locks; each write goes through :func:`write_text_atomic`.

    Usage::

        writer = AtomicFileWriter(file_mode=0o600)
        await writer.write_json(path, data)
    """

    def __init__(self, file_mode: int | None = None, dir_mode: int = 0o755) -> None:
        self._locks: dict[Path, asyncio.Lock] = {}
        self._file_mode = file_mode
        self._dir_mode = dir_mode

    def _get_lock(self, path: Path) -> asyncio.Lock:
        """Get or create a lock for *path* (resolved to canonical form)."""
        resolved = path.resolve()
        if resolved not in self._locks:
            self._locks[resolved] = asyncio.Lock()
        return self._locks[resolved]

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    async def write_text(self, path: Path, content: str, encoding: str = "utf-8") -> bool:
        """Atomically write *content* to *path*.

        Returns ``True`` on success, ``False`` on failure.
        """
        lock = self._get_lock(path)
        async with lock:
            try:
                write_text_atomic(
                    path,
                    content,
                    file_mode=self._file_mode,
                    dir_mode=self._dir_mode,
                    encoding=encoding,
                )
                return True
            except OSError as exc:
                logger.error(f"Atomic write failed for {path}: {exc}")
                return False

    async def write_json(
        self,
        path: Path,
        data: Any,
        indent: int = 2,
        ensure_ascii: bool = False,
    ) -> bool:
        """Atomically serialize *data* as JSON and write to *path*."""
        try:
            content = json.dumps(data, indent=indent, ensure_ascii=ensure_ascii) + "\n"
        except (TypeError, ValueError) as exc:
            logger.error(f"JSON serialization failed for {path}: {exc}")
            return False
        return await self.write_text(path, content)
