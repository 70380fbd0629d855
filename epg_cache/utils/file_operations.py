"""
File operation utilities

Async reads of static assets served by the API.
"""
import logging
from pathlib import Path

import aiofiles


logger = logging.getLogger(__name__)


async def read_file_bytes(file_path: str | Path) -> bytes:
    """
    Read a file without blocking the event loop

    Args:
        file_path: Path to the file

    Returns:
        File contents

    Raises:
        OSError: If the file cannot be read
    """
    async with aiofiles.open(file_path, "rb") as f:
        content = await f.read()

    logger.debug("Read %s bytes from %s", len(content), file_path)
    return content
