"""Shared file utilities for proxypal.

Provides common utilities used by config, engine config and credentials:
- get_app_dir: OS-appropriate application directory
- set_secure_permissions: Secure file/directory permissions
- atomic_write_text: Crash-safe file replacement
"""

from __future__ import annotations

__all__ = [
    "atomic_write_text",
    "get_app_dir",
    "set_secure_permissions",
]

import os
import sys
import tempfile
from pathlib import Path

import click

from proxypal.constants import APP_NAME


def get_app_dir() -> Path:
    """Get the OS-appropriate application directory.

    Uses click.get_app_dir() which returns:
    - macOS: ~/Library/Application Support/proxypal
    - Linux: ~/.config/proxypal (XDG compliant)
    - Windows: C:\\Users\\<user>\\AppData\\Roaming\\proxypal

    Returns:
        Path to the application directory.
    """
    return Path(click.get_app_dir(APP_NAME))


def set_secure_permissions(path: Path, *, is_directory: bool = False) -> None:
    """Set secure permissions on file or directory.

    Sets permissions to restrict access to owner only:
    - Directory: 0o700 (rwx------)
    - File: 0o600 (rw-------)

    Does nothing on Windows. Silently ignores permission errors
    (some systems don't allow permission changes).

    Args:
        path: Path to file or directory.
        is_directory: If True, use directory permissions (0o700).
    """
    if sys.platform == "win32":
        return

    try:
        mode = 0o700 if is_directory else 0o600
        path.chmod(mode)
    except OSError:
        pass  # Permission changes might fail on some systems


def atomic_write_text(path: Path, content: str, *, secure: bool = True) -> None:
    """Replace a file's content atomically.

    Writes to a temp file in the same directory, then renames over the
    target, so readers see either the old or the new content.

    Args:
        path: Destination file.
        content: Text to write.
        secure: If True, the file is created with 0o600 permissions.

    Raises:
        OSError: If the file cannot be written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    # Same directory ensures rename is atomic (same filesystem)
    fd, temp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=f".{path.stem}_",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())

        if secure:
            os.chmod(temp_path, 0o600)

        os.replace(temp_path, path)

    except Exception:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise
