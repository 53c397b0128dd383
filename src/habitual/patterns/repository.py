"""Mirror patterns into the synced knowledge repository.

Each pattern becomes one markdown file:

    <knowledge_root>/_user/patterns/<category>/<id>.md

The knowledge directory is shared with other tools (and pushed by an
external sync), so the writer refuses to follow symlinks anywhere below the
root, and swaps files in atomically so a crash never leaves a truncated file
at the final path. The walk holds a descriptor for each directory and does
every later step relative to it, so a component swapped mid-write cannot
redirect the file outside the root.
"""

from __future__ import annotations

import os
import stat
import uuid
from pathlib import Path

import yaml

from habitual.core.config import RepositoryConfig
from habitual.core.errors import PersistenceError, SecurityError
from habitual.core.logging import get_logger
from habitual.patterns.confidence import clamp_weight
from habitual.patterns.locking import FileRepositoryLock, RepositoryLock
from habitual.patterns.models import ConfidenceTier, PatternCategory, PatternRecord
from habitual.patterns.sanitize import (
    collapse_whitespace,
    sanitize_pattern_id,
    validate_category,
    validate_confidence,
    validate_text,
)

_logger = get_logger("patterns.repository")

# Directory components between the knowledge root and the category directory
PATTERNS_SUBDIR = ("_user", "patterns")

_DIR_FLAGS = os.O_RDONLY | os.O_DIRECTORY | os.O_NOFOLLOW | os.O_CLOEXEC
_TEMP_FLAGS = os.O_WRONLY | os.O_CREAT | os.O_EXCL | os.O_NOFOLLOW | os.O_CLOEXEC


def render_pattern_file(
    pattern_id: str,
    category: PatternCategory,
    name: str,
    description: str,
    instruction: str,
    confidence: ConfidenceTier,
    weight: float,
) -> str:
    """Render the markdown file for one pattern (frontmatter + body)."""
    frontmatter = yaml.safe_dump(
        {
            "id": pattern_id,
            "category": category.value,
            "confidence": confidence.value,
            "weight": weight,
        },
        default_flow_style=False,
        sort_keys=False,
    )
    parts = [f"# {collapse_whitespace(name)}\n"]
    if description:
        parts.append(f"{description}\n")
    parts.append(f"## Instruction\n\n{instruction}\n")
    return f"---\n{frontmatter}---\n\n" + "\n".join(parts)


class RepositoryWriter:
    """Writes pattern files under the knowledge root.

    All writes happen while holding the repository lock.
    """

    def __init__(
        self,
        config: RepositoryConfig,
        lock: RepositoryLock | None = None,
    ) -> None:
        self.config = config
        self.lock = lock or FileRepositoryLock(
            config.effective_lock_path,
            timeout_seconds=config.lock_timeout_seconds,
        )

    @property
    def root(self) -> Path:
        return self.config.knowledge_root

    def target_path(self, category: PatternCategory | str, pattern_id: str) -> Path:
        """Where a pattern's file lives (nothing is checked or created)."""
        category = validate_category(category)
        clean_id = sanitize_pattern_id(pattern_id)
        return self.root.joinpath(*PATTERNS_SUBDIR, category.value, f"{clean_id}.md")

    def write_to_repo(
        self,
        pattern_id: str,
        category: PatternCategory | str,
        name: str,
        description: str,
        instruction: str,
        confidence: ConfidenceTier | str,
        weight: float,
    ) -> Path:
        """Write (or replace) the file for one pattern.

        Args:
            pattern_id: Caller-supplied id; sanitized before use.
            category: One of PatternCategory; names the directory.
            name: Rendered as the file's title.
            description: Rendered under the title (may be empty).
            instruction: Rendered in the Instruction section.
            confidence: Recorded in the frontmatter.
            weight: Recorded in the frontmatter (clamped).

        Returns:
            The path of the written file.

        Raises:
            ValidationError: If an input is rejected; nothing is written.
            SecurityError: If a path component is a symlink or not a
                directory, or the target is not a regular file.
            PersistenceError: If the lock cannot be taken or the write fails.
        """
        clean_id = sanitize_pattern_id(pattern_id)
        category = validate_category(category)
        content = render_pattern_file(
            clean_id,
            category,
            validate_text(name, "name"),
            validate_text(description, "description", required=False),
            validate_text(instruction, "instruction"),
            validate_confidence(confidence),
            clamp_weight(weight),
        )

        target = self.target_path(category, clean_id)
        with self.lock.hold():
            dir_fd = self._open_directory(category)
            try:
                self._check_target(dir_fd, target)
                self._atomic_write(dir_fd, target, content)
            finally:
                os.close(dir_fd)

        _logger.info(
            "repository_file_written",
            pattern_id=clean_id,
            category=category.value,
            path=str(target),
            size=len(content.encode("utf-8")),
        )
        return target

    def mirror_pattern(self, record: PatternRecord) -> Path:
        """Write the file for a stored pattern."""
        return self.write_to_repo(
            record.id,
            record.category,
            record.name,
            record.description,
            record.instruction,
            record.confidence,
            record.weight,
        )

    def _refuse(self, path: Path, reason: str) -> SecurityError:
        _logger.warning("symlink_refused", path=str(path), reason=reason)
        return SecurityError(f"refusing to write through {path}: {reason}", path=path)

    def _open_root(self) -> int:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            return os.open(self.root, os.O_RDONLY | os.O_DIRECTORY | os.O_CLOEXEC)
        except OSError as e:
            raise PersistenceError(f"cannot open knowledge root {self.root}: {e}") from e

    def _open_child(self, parent_fd: int, name: str, path: Path) -> int:
        """Create (if missing) and open one directory below ``parent_fd``.

        The component is opened with O_NOFOLLOW, so a symlink is never
        traversed even if it appears after the existence check.
        """
        try:
            os.mkdir(name, dir_fd=parent_fd)
        except FileExistsError:
            pass
        except OSError as e:
            raise PersistenceError(f"cannot create {path}: {e}") from e

        try:
            return os.open(name, _DIR_FLAGS, dir_fd=parent_fd)
        except OSError as e:
            try:
                mode = os.stat(name, dir_fd=parent_fd, follow_symlinks=False).st_mode
            except OSError:
                mode = None
            if mode is not None and stat.S_ISLNK(mode):
                raise self._refuse(path, "path component is a symlink") from e
            if mode is not None and not stat.S_ISDIR(mode):
                raise self._refuse(path, "path component is not a directory") from e
            raise PersistenceError(f"cannot open {path}: {e}") from e

    def _open_directory(self, category: PatternCategory) -> int:
        """Walk root/_user/patterns/<category>, creating what is missing.

        Returns an open descriptor for the category directory; the caller
        closes it. Every later operation is relative to that descriptor, so
        renaming or swapping a component mid-write cannot redirect the file.
        """
        fd = self._open_root()
        path = self.root
        try:
            for part in (*PATTERNS_SUBDIR, category.value):
                path = path / part
                child = self._open_child(fd, part, path)
                os.close(fd)
                fd = child
        except BaseException:
            os.close(fd)
            raise
        return fd

    def _check_target(self, dir_fd: int, target: Path) -> None:
        try:
            mode = os.stat(target.name, dir_fd=dir_fd, follow_symlinks=False).st_mode
        except FileNotFoundError:
            return
        except OSError as e:
            raise PersistenceError(f"cannot stat {target}: {e}") from e
        if stat.S_ISLNK(mode):
            raise self._refuse(target, "target file is a symlink")
        if not stat.S_ISREG(mode):
            raise self._refuse(target, "target is not a regular file")

    @staticmethod
    def _atomic_write(dir_fd: int, target: Path, content: str) -> None:
        """Write via a temp file in the same directory, then os.replace."""
        tmp_name = f".{target.stem}.{uuid.uuid4().hex}.tmp"
        try:
            fd = os.open(tmp_name, _TEMP_FLAGS, 0o644, dir_fd=dir_fd)
        except OSError as e:
            raise PersistenceError(f"cannot create temp file in {target.parent}: {e}") from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, target.name, src_dir_fd=dir_fd, dst_dir_fd=dir_fd)
        except OSError as e:
            _discard(tmp_name, dir_fd)
            raise PersistenceError(f"cannot write {target}: {e}") from e
        except BaseException:
            _discard(tmp_name, dir_fd)
            raise


def _discard(name: str, dir_fd: int) -> None:
    try:
        os.unlink(name, dir_fd=dir_fd)
    except FileNotFoundError:
        pass


__all__ = ["PATTERNS_SUBDIR", "RepositoryWriter", "render_pattern_file"]
