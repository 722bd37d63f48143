"""Local temp file handling for uploads awaiting durable storage."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def temp_file_present(path: str | None) -> bool:
    return bool(path) and Path(path).is_file()


async def read_temp_file(path: str) -> bytes:
    return await asyncio.to_thread(Path(path).read_bytes)


def discard_temp_file(path: str | None) -> None:
    """Remove an upload's temp file if it is still on disk."""
    if not path:
        return
    try:
        Path(path).unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Could not remove temp file %s: %s", path, exc)
    else:
        logger.debug("Removed temp file %s", path)
