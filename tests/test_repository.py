"""Tests for RepositoryWriter: layout, atomic writes and symlink refusal."""

from __future__ import annotations

import os
from collections.abc import Callable, Generator
from contextlib import contextmanager
from pathlib import Path

import pytest
import yaml

from habitual.core.config import RepositoryConfig
from habitual.core.errors import PersistenceError, SecurityError, ValidationError
from habitual.patterns.locking import FileRepositoryLock
from habitual.patterns.models import PatternRecord
from habitual.patterns.repository import RepositoryWriter, render_pattern_file


class RecordingLock:
    """RepositoryLock test double that records acquire/release."""

    def __init__(self) -> None:
        self.events: list[str] = []

    @contextmanager
    def hold(self) -> Generator[None, None, None]:
        self.events.append("acquire")
        try:
            yield
        finally:
            self.events.append("release")


def _split(content: str) -> tuple[dict, str]:
    _, frontmatter, body = content.split("---\n", 2)
    return yaml.safe_load(frontmatter), body


def _write(writer: RepositoryWriter, **overrides: object) -> Path:
    fields: dict[str, object] = {
        "pattern_id": "verify-before-done",
        "category": "verification",
        "name": "Verify before claiming done",
        "description": "User asks for test output.",
        "instruction": "Run the tests first.",
        "confidence": "high",
        "weight": 1.5,
    }
    fields.update(overrides)
    return writer.write_to_repo(**fields)  # type: ignore[arg-type]


@pytest.fixture
def writer(knowledge_root: Path) -> RepositoryWriter:
    return RepositoryWriter(RepositoryConfig(knowledge_root=knowledge_root))


@pytest.fixture
def outside(tmp_path: Path) -> Path:
    """A directory outside the knowledge root that must never be written."""
    target = tmp_path / "outside"
    target.mkdir()
    return target


class TestWriteToRepo:
    def test_writes_under_category_directory(
        self, writer: RepositoryWriter, knowledge_root: Path,
    ) -> None:
        path = _write(writer)
        expected = knowledge_root / "_user" / "patterns" / "verification"
        assert path == expected / "verify-before-done.md"
        assert path.is_file()

    def test_file_format(self, writer: RepositoryWriter) -> None:
        meta, body = _split(_write(writer).read_text(encoding="utf-8"))
        assert meta == {
            "id": "verify-before-done",
            "category": "verification",
            "confidence": "high",
            "weight": 1.5,
        }
        assert body.startswith("\n# Verify before claiming done\n")
        assert "User asks for test output." in body
        assert "## Instruction\n\nRun the tests first.\n" in body

    def test_empty_description_omitted(self, writer: RepositoryWriter) -> None:
        _, body = _split(_write(writer, description="").read_text(encoding="utf-8"))
        assert body == "\n# Verify before claiming done\n\n## Instruction\n\nRun the tests first.\n"

    def test_yaml_special_characters_survive(self, writer: RepositoryWriter) -> None:
        meta, _ = _split(_write(writer, pattern_id="yes").read_text(encoding="utf-8"))
        assert meta["id"] == "yes"

    def test_overwrite_replaces_content(self, writer: RepositoryWriter) -> None:
        _write(writer, instruction="Old.")
        path = _write(writer, instruction="New.")
        content = path.read_text(encoding="utf-8")
        assert "New." in content
        assert "Old." not in content

    def test_no_temp_files_left(self, writer: RepositoryWriter) -> None:
        path = _write(writer)
        assert sorted(p.name for p in path.parent.iterdir()) == ["verify-before-done.md"]

    def test_weight_clamped(self, writer: RepositoryWriter) -> None:
        meta, _ = _split(_write(writer, weight=999.9).read_text(encoding="utf-8"))
        assert meta["weight"] == 2.0

    def test_traversal_in_id_stays_inside_root(
        self, writer: RepositoryWriter, knowledge_root: Path,
    ) -> None:
        path = _write(writer, pattern_id="../../../etc/evil")
        assert path.name == "etcevil.md"
        assert path.resolve().is_relative_to(knowledge_root.resolve())

    @pytest.mark.parametrize(
        "overrides",
        [
            {"category": "../../etc"},
            {"category": "bogus"},
            {"pattern_id": "../.."},
            {"confidence": "certain"},
            {"name": ""},
            {"weight": float("nan")},
        ],
    )
    def test_invalid_input_writes_nothing(
        self, writer: RepositoryWriter, knowledge_root: Path, overrides: dict[str, object],
    ) -> None:
        with pytest.raises(ValidationError):
            _write(writer, **overrides)
        assert list(knowledge_root.iterdir()) == []

    def test_creates_missing_root(self, tmp_path: Path) -> None:
        writer = RepositoryWriter(RepositoryConfig(knowledge_root=tmp_path / "new" / "kb"))
        assert _write(writer).is_file()

    def test_mirror_pattern(
        self, writer: RepositoryWriter, write_pattern: Callable[..., PatternRecord],
    ) -> None:
        record = write_pattern(category="workflow", weight=0.8)
        path = writer.mirror_pattern(record)
        assert path.parent.name == "workflow"
        meta, _ = _split(path.read_text(encoding="utf-8"))
        assert meta["weight"] == 0.8
        assert meta["confidence"] == record.confidence.value


class TestSymlinkRefusal:
    """Writes never follow a symlink anywhere below the knowledge root."""

    def test_symlinked_user_directory(
        self, writer: RepositoryWriter, knowledge_root: Path, outside: Path,
    ) -> None:
        (knowledge_root / "_user").symlink_to(outside, target_is_directory=True)
        with pytest.raises(SecurityError) as exc_info:
            _write(writer)
        assert exc_info.value.path == knowledge_root / "_user"
        assert list(outside.iterdir()) == []

    def test_symlinked_category_directory(
        self, writer: RepositoryWriter, knowledge_root: Path, outside: Path,
    ) -> None:
        patterns = knowledge_root / "_user" / "patterns"
        patterns.mkdir(parents=True)
        (patterns / "verification").symlink_to(outside, target_is_directory=True)
        with pytest.raises(SecurityError):
            _write(writer)
        assert list(outside.iterdir()) == []

    def test_symlinked_target_file(
        self, writer: RepositoryWriter, knowledge_root: Path, outside: Path,
    ) -> None:
        victim = outside / "victim.txt"
        victim.write_text("original", encoding="utf-8")
        category_dir = knowledge_root / "_user" / "patterns" / "verification"
        category_dir.mkdir(parents=True)
        (category_dir / "verify-before-done.md").symlink_to(victim)

        with pytest.raises(SecurityError):
            _write(writer)
        assert victim.read_text(encoding="utf-8") == "original"
        assert (category_dir / "verify-before-done.md").is_symlink()

    def test_dangling_symlink_target(
        self, writer: RepositoryWriter, knowledge_root: Path, outside: Path,
    ) -> None:
        category_dir = knowledge_root / "_user" / "patterns" / "verification"
        category_dir.mkdir(parents=True)
        (category_dir / "verify-before-done.md").symlink_to(outside / "created.txt")

        with pytest.raises(SecurityError):
            _write(writer)
        assert not (outside / "created.txt").exists()

    def test_component_that_is_a_file(
        self, writer: RepositoryWriter, knowledge_root: Path,
    ) -> None:
        (knowledge_root / "_user").write_text("not a directory", encoding="utf-8")
        with pytest.raises(SecurityError):
            _write(writer)

    def test_target_that_is_a_directory(
        self, writer: RepositoryWriter, knowledge_root: Path,
    ) -> None:
        target = knowledge_root / "_user" / "patterns" / "verification" / "verify-before-done.md"
        target.mkdir(parents=True)
        with pytest.raises(SecurityError):
            _write(writer)

    def test_refusal_is_logged_as_warning(
        self,
        writer: RepositoryWriter,
        knowledge_root: Path,
        outside: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        import habitual.patterns.repository as repository_module

        events: list[tuple[str, dict]] = []

        class _Capture:
            def warning(self, event: str, **kw: object) -> None:
                events.append((event, kw))

            def info(self, event: str, **kw: object) -> None:
                events.append((event, kw))

        monkeypatch.setattr(repository_module, "_logger", _Capture())
        (knowledge_root / "_user").symlink_to(outside, target_is_directory=True)
        with pytest.raises(SecurityError):
            _write(writer)
        assert events[0][0] == "symlink_refused"

    def test_directory_swapped_mid_write_is_not_followed(
        self,
        writer: RepositoryWriter,
        knowledge_root: Path,
        outside: Path,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        category_dir = knowledge_root / "_user" / "patterns" / "verification"
        moved = tmp_path / "moved"
        original_check = RepositoryWriter._check_target

        def _swap_then_check(self: RepositoryWriter, dir_fd: int, target: Path) -> None:
            category_dir.rename(moved)
            category_dir.symlink_to(outside, target_is_directory=True)
            original_check(self, dir_fd, target)

        monkeypatch.setattr(RepositoryWriter, "_check_target", _swap_then_check)
        _write(writer)

        assert list(outside.iterdir()) == []
        assert (moved / "verify-before-done.md").is_file()


class TestLockingAndAtomicity:
    def test_lock_held_around_write(self, knowledge_root: Path) -> None:
        lock = RecordingLock()
        writer = RepositoryWriter(RepositoryConfig(knowledge_root=knowledge_root), lock=lock)
        _write(writer)
        assert lock.events == ["acquire", "release"]

    def test_lock_released_on_refusal(self, knowledge_root: Path, outside: Path) -> None:
        lock = RecordingLock()
        writer = RepositoryWriter(RepositoryConfig(knowledge_root=knowledge_root), lock=lock)
        (knowledge_root / "_user").symlink_to(outside, target_is_directory=True)
        with pytest.raises(SecurityError):
            _write(writer)
        assert lock.events == ["acquire", "release"]

    def test_validation_happens_before_locking(self, knowledge_root: Path) -> None:
        lock = RecordingLock()
        writer = RepositoryWriter(RepositoryConfig(knowledge_root=knowledge_root), lock=lock)
        with pytest.raises(ValidationError):
            _write(writer, category="bogus")
        assert lock.events == []

    def test_default_lock_lives_outside_root(self, knowledge_root: Path) -> None:
        writer = RepositoryWriter(RepositoryConfig(knowledge_root=knowledge_root))
        assert isinstance(writer.lock, FileRepositoryLock)
        assert writer.lock.path == knowledge_root.parent / ".knowledge.lock"
        _write(writer)
        assert writer.lock.path.exists()
        assert not any(p.name.endswith(".lock") for p in knowledge_root.rglob("*"))

    def test_busy_lock_times_out(self, knowledge_root: Path) -> None:
        config = RepositoryConfig(knowledge_root=knowledge_root, lock_timeout_seconds=0.1)
        writer = RepositoryWriter(config)
        other = FileRepositoryLock(config.effective_lock_path, timeout_seconds=1.0)
        with other.hold():
            with pytest.raises(PersistenceError) as exc_info:
                _write(writer)
            assert exc_info.value.transient is True
        assert not (knowledge_root / "_user").exists()

    def test_failed_replace_keeps_old_file_and_removes_temp(
        self, writer: RepositoryWriter, monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        path = _write(writer, instruction="Old.")

        def _fail(*args: object, **kwargs: object) -> None:
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", _fail)
        with pytest.raises(PersistenceError):
            _write(writer, instruction="New.")
        monkeypatch.undo()

        assert "Old." in path.read_text(encoding="utf-8")
        assert sorted(p.name for p in path.parent.iterdir()) == ["verify-before-done.md"]


def test_render_pattern_file_is_stable() -> None:
    from habitual.patterns.models import ConfidenceTier, PatternCategory

    args = ("a", PatternCategory.REVIEW, "N", "", "I", ConfidenceTier.LOW, 1.0)
    assert render_pattern_file(*args) == render_pattern_file(*args)
