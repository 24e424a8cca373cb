from __future__ import annotations

import logging
import os
import re
import stat
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

# Characters that trip interpreter argument parsing even inside quotes.
HOSTILE_CHARS = frozenset("&()[]{}^=;!'+,`~$%#@\"")
DEFAULT_SYNC_NAMES = ("OneDrive", "OneDrive - Personal", "OneDrive - Business")


def has_hostile_chars(path: str) -> bool:
    if any(ch in HOSTILE_CHARS for ch in path):
        return True
    return any(ord(ch) > 127 for ch in path)


def is_reparse_point(path: Path) -> bool:
    try:
        info = os.lstat(path)
    except OSError:
        return False
    attributes = getattr(info, "st_file_attributes", 0)
    if attributes:
        return bool(attributes & stat.FILE_ATTRIBUTE_REPARSE_POINT)
    return stat.S_ISLNK(info.st_mode)


def find_sync_root(path: Path, sync_names: Sequence[str] = DEFAULT_SYNC_NAMES) -> Optional[Path]:
    names = {name.lower() for name in sync_names}
    current = Path(os.path.abspath(path))
    for candidate in (current, *current.parents):
        if candidate.name.lower() in names:
            return candidate
    return None


def is_sync_managed(path: Path, sync_names: Sequence[str] = DEFAULT_SYNC_NAMES) -> bool:
    full = Path(os.path.abspath(path))
    if find_sync_root(full, sync_names) is not None:
        return True
    names = {name.lower() for name in sync_names}
    # Windows-style separators are not split by PurePosixPath.
    if any(part.lower() in names for part in re.split(r"[\\/]", str(full))):
        return True
    # Tenant-suffixed roots such as "OneDrive - Contoso" show up as reparse points.
    for candidate in (full, *full.parents):
        if is_reparse_point(candidate) and candidate.name.lower().startswith(tuple(names)):
            return True
    return False


def _win_short_path(path: str) -> Optional[str]:
    import ctypes
    from ctypes import wintypes

    get_short = ctypes.windll.kernel32.GetShortPathNameW
    get_short.argtypes = [wintypes.LPCWSTR, wintypes.LPWSTR, wintypes.DWORD]
    get_short.restype = wintypes.DWORD
    size = get_short(path, None, 0)
    if size == 0:
        return None
    buffer = ctypes.create_unicode_buffer(size)
    written = get_short(path, buffer, size)
    if written == 0 or written >= size:
        return None
    return buffer.value


def short_path(path: str) -> str:
    """Return the 8.3 alias of ``path``, or ``path`` itself when none resolves.

    For a path that does not exist yet the parent directory is aliased and the
    final component kept as-is.
    """
    if not path or sys.platform != "win32":
        return path
    try:
        if os.path.exists(path):
            resolved = _win_short_path(path)
            if resolved:
                return resolved
        parent = os.path.dirname(path)
        if parent and parent != path and os.path.isdir(parent):
            return os.path.join(short_path(parent), os.path.basename(path))
    except OSError:
        return path
    return path


def safe_path(path: str, sync_names: Sequence[str] = DEFAULT_SYNC_NAMES) -> str:
    if not path:
        return path
    if has_hostile_chars(path) or is_sync_managed(Path(path), sync_names):
        return short_path(path)
    return path


@dataclass
class SyncDetection:
    workspace_root: Path
    is_sync_path: bool
    sync_root: Optional[Path] = None
    is_reparse_point: bool = False


def detect_sync_workspace(
    workspace_root: Path,
    logger: logging.Logger,
    sync_names: Sequence[str] = DEFAULT_SYNC_NAMES,
) -> SyncDetection:
    root = Path(workspace_root)
    detection = SyncDetection(
        workspace_root=root,
        is_sync_path=is_sync_managed(root, sync_names),
        sync_root=find_sync_root(root, sync_names),
        is_reparse_point=is_reparse_point(root),
    )
    if detection.is_sync_path:
        logger.warning("Workspace is inside a sync-managed directory: %s", root)
        if detection.sync_root is not None:
            logger.warning("  Sync root: %s", detection.sync_root)
        logger.warning(
            "File locking, reparse points and sync delays can break unit launches."
        )
        logger.warning(
            "Move the workspace to a local directory such as C:\\NovaisFPS\\; "
            "until then short path aliases are used."
        )
    return detection
