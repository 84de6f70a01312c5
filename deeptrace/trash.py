"""Reversible session deletion via a sibling ``.trash`` directory.

Both operations refuse to touch a path that does not textually contain the
claimed session id.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable

from deeptrace import config
from deeptrace.errors import InvalidInputError, IOFailureError, NotFoundError, PathMismatchError

logger = logging.getLogger("deeptrace.trash")


def _validate(session_id: str, file_path: str | None, allowed_roots: Iterable[Path] | None) -> Path:
    if not session_id or not session_id.strip():
        raise InvalidInputError("sessionId required")
    if not file_path or not str(file_path).strip():
        raise InvalidInputError("filePath required")
    if session_id not in str(file_path):
        logger.warning(f"Rejected mutation: path {file_path!r} does not contain session id {session_id!r}")
        raise PathMismatchError(session_id, str(file_path))
    path = Path(file_path)
    if allowed_roots is not None:
        resolved = path.resolve()
        if not any(_is_within(resolved, root.resolve()) for root in allowed_roots):
            logger.warning(f"Rejected mutation outside provider roots: {file_path!r}")
            raise PathMismatchError(session_id, str(file_path))
    return path


def _is_within(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
        return True
    except ValueError:
        return False


def trash_path_for(path: Path) -> Path:
    return path.parent / config.TRASH_DIR_NAME / path.name


def delete_session(session_id: str, file_path: str | None, allowed_roots: Iterable[Path] | None = None) -> Path | None:
    """Move a session file into its sibling trash directory.

    Returns the trash location, or None when the rename was impossible and
    the file was removed outright.
    """
    path = _validate(session_id, file_path, allowed_roots)
    if not path.is_file():
        raise NotFoundError("session file", f"file not found: {path}")
    target = trash_path_for(path)
    try:
        target.parent.mkdir(exist_ok=True)
        os.replace(path, target)
        logger.info(f"Moved {path} to trash")
        return target
    except OSError as rename_error:
        logger.warning(f"Rename to trash failed for {path} ({rename_error}); deleting instead")
        try:
            path.unlink()
        except FileNotFoundError as e:
            raise NotFoundError("session file", f"file not found: {path}") from e
        except OSError as e:
            raise IOFailureError(f"could not delete {path}: {e}") from e
        logger.info(f"Deleted {path}")
        return None


def restore_session(session_id: str, file_path: str | None, allowed_roots: Iterable[Path] | None = None) -> Path:
    """Move a trashed session file back to *file_path*."""
    path = _validate(session_id, file_path, allowed_roots)
    source = trash_path_for(path)
    if not source.is_file():
        raise NotFoundError("trashed session", "file not found in trash")
    if path.exists():
        raise IOFailureError(f"refusing to overwrite existing file {path}")
    try:
        os.replace(source, path)
    except OSError as e:
        raise IOFailureError(f"could not restore {path}: {e}") from e
    logger.info(f"Restored {path} from trash")
    return path
