"""
Utility modules for the narrated video pipeline.
"""

from .file_utils import (
    ensure_directory,
    write_bytes_safe,
    remove_directory,
    concat_list_entry,
    safe_filename,
)

from .retry import (
    BackoffPolicy,
    call_with_backoff,
)

__all__ = [
    "ensure_directory",
    "write_bytes_safe",
    "remove_directory",
    "concat_list_entry",
    "safe_filename",
    "BackoffPolicy",
    "call_with_backoff",
]
