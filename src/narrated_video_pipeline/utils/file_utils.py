"""
File utility functions for the narrated video pipeline.
"""

import shutil
import uuid
from pathlib import Path
from typing import Union

from ..logging_config import get_logger

logger = get_logger(__name__)


def ensure_directory(path: Union[str, Path]) -> Path:
    """
    Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path to create

    Returns:
        Path object for the directory
    """
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    logger.debug("Directory ensured", path=str(path))
    return path


def write_bytes_safe(file_path: Union[str, Path], data: bytes) -> Path:
    """
    Write bytes to a file, creating parent directories.

    The data lands in a sibling temporary file first and is moved into place,
    so readers never observe a partially written file.
    """
    file_path = Path(file_path)
    ensure_directory(file_path.parent)
    partial = file_path.with_name(f".{file_path.name}.{uuid.uuid4().hex}.part")
    partial.write_bytes(data)
    partial.replace(file_path)
    return file_path


def remove_directory(path: Union[str, Path]) -> bool:
    """
    Delete a directory tree.

    Returns:
        True if something was removed
    """
    path = Path(path)
    if not path.exists():
        return False
    shutil.rmtree(path, ignore_errors=True)
    logger.info("Directory removed", path=str(path))
    return True


def concat_list_entry(path: Union[str, Path]) -> str:
    """
    Format one line of an ffmpeg concat demuxer list.

    The path is made absolute and single-quoted; embedded single quotes are
    closed, escaped and reopened (``'`` becomes ``'\\''``).
    """
    absolute = str(Path(path).absolute())
    return "file '" + absolute.replace("'", "'\\''") + "'"


def safe_filename(filename: str, max_length: int = 64) -> str:
    """
    Create a safe filename fragment by replacing problematic characters.

    Args:
        filename: Original name
        max_length: Maximum length for the result

    Returns:
        Safe filename string
    """
    safe_chars = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789-_."
    safe_name = "".join(c if c in safe_chars else "_" for c in filename)
    return safe_name[:max_length] or "clip"
