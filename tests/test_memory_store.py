"""Tests for librarian.memory.store."""

import pytest

from librarian.core.errors import ConflictResolutionError, MemorySchemaError
from librarian.memory.store import MemoryStore
from librarian.summarizer import Summarizer
from librarian.vcs.source import ChangesetSource


CONFLICTED = """# PROJECT_MEMORY

## Project Soul
Soul.

## Tech Stack
<<<<<<< HEAD
- Flask
=======
- FastAPI
>>>>>>> feature

## Architecture
Layers.

## Core Rules
- Rule.

## Recent Decisions
- **One**: first.

## Active Tech Debt
- Debt.
"""


@pytest.fixture
def store(git_repo):
    return MemoryStore(git_repo / "PROJECT_MEMORY.md", source=ChangesetSource(git_repo))


def _staged(git):
    return git("diff", "--cached", "--name-only").split()


class TestWrite:
    def test_valid_document_written_and_staged(self, store, git, valid_memory):
        store.write(valid_memory)
        assert store.read_raw() == valid_memory
        assert "PROJECT_MEMORY.md" in _staged(git)

    def test_trailing_newline_added(self, store, valid_memory):
        store.write(valid_memory.rstrip("\n"))
        assert store.read_raw().endswith("- None yet.\n")

    def test_missing_section_rejected_and_disk_untouched(self, store, valid_memory):
        store.write(valid_memory)
        broken = valid_memory.replace("## Core Rules", "## Rules")
        with pytest.raises(MemorySchemaError) as excinfo:
            store.write(broken)
        assert excinfo.value.missing == ["Core Rules"]
        assert store.read_raw() == valid_memory

    def test_empty_document_rejected(self, store):
        with pytest.raises(MemorySchemaError) as excinfo:
            store.write("   \n")
        assert excinfo.value.missing == []
        assert not store.exists()

    def test_no_temp_files_left(self, store, git_repo, valid_memory):
        store.write(valid_memory)
        store.write(valid_memory.replace("Python 3", "Python 3.12"))
        leftovers = [p.name for p in git_repo.iterdir() if p.name.endswith(".tmp")]
        assert leftovers == []

    def test_ignored_document_written_not_staged(self, store, git_repo, git, valid_memory):
        (git_repo / ".gitignore").write_text("PROJECT_MEMORY.md\n", encoding="utf-8")
        store.write(valid_memory)
        assert store.exists()
        assert "PROJECT_MEMORY.md" not in _staged(git)

    def test_without_source_only_writes(self, tmp_path, valid_memory):
        store = MemoryStore(tmp_path / "PROJECT_MEMORY.md")
        store.write(valid_memory)
        assert store.read_raw() == valid_memory


class TestCompaction:
    def _bloated(self, valid_memory, entries=12, words_per_entry=30):
        filler = " ".join(["detail"] * words_per_entry)
        decisions = "\n".join(f"- **Decision {i}**: {filler}" for i in range(entries))
        return valid_memory.replace(
            "- **Bootstrap**: created the project skeleton.", decisions
        )

    def test_over_cap_keeps_newest_five(self, git_repo, valid_memory):
        store = MemoryStore(git_repo / "PROJECT_MEMORY.md", soft_word_cap=150)
        store.write(self._bloated(valid_memory))
        text = store.read_raw()
        assert "Decision 4" in text
        assert "Decision 5" not in text
        assert MemoryStore.validate(text)

    def test_under_cap_unchanged(self, git_repo, valid_memory):
        store = MemoryStore(git_repo / "PROJECT_MEMORY.md", soft_word_cap=10_000)
        bloated = self._bloated(valid_memory)
        store.write(bloated)
        assert store.read_raw() == bloated


class TestAppend:
    def test_append_to_existing(self, store, valid_memory):
        store.write(valid_memory)
        store.append_to_section("Active Tech Debt", "- Flaky watcher test.")
        text = store.read_raw()
        assert "- Flaky watcher test." in text
        assert MemoryStore.validate(text)

    def test_append_to_missing_document_starts_from_skeleton(self, store):
        store.append_to_section("Recent Decisions", "- **Init**: first entry.")
        text = store.read_raw()
        assert MemoryStore.validate(text)
        assert "- **Init**: first entry." in text


class TestConflicts:
    def test_merged_on_read(self, git_repo, make_generator, valid_memory):
        generator = make_generator(responses=[valid_memory])
        store = MemoryStore(
            git_repo / "PROJECT_MEMORY.md",
            summarizer=Summarizer(generator),
        )
        store.path.write_text(CONFLICTED, encoding="utf-8")

        assert store.read() == valid_memory.strip()
        assert generator.features == ["conflict-merge"]
        assert generator.calls[0][2].temperature == 0.2
        # read() does not persist
        assert store.read_raw() == CONFLICTED

    def test_residual_markers_raise(self, git_repo, make_generator):
        generator = make_generator(responses=[CONFLICTED])
        store = MemoryStore(git_repo / "PROJECT_MEMORY.md", summarizer=Summarizer(generator))
        store.path.write_text(CONFLICTED, encoding="utf-8")
        with pytest.raises(ConflictResolutionError):
            store.read()

    def test_missing_sections_after_merge_raise(self, git_repo, make_generator):
        generator = make_generator(responses=["## Project Soul\nOnly this.\n"])
        store = MemoryStore(git_repo / "PROJECT_MEMORY.md", summarizer=Summarizer(generator))
        store.path.write_text(CONFLICTED, encoding="utf-8")
        with pytest.raises(ConflictResolutionError):
            store.read()

    def test_no_summarizer_raises(self, store):
        store.path.write_text(CONFLICTED, encoding="utf-8")
        with pytest.raises(ConflictResolutionError):
            store.read()

    def test_clean_document_read_verbatim(self, store, valid_memory):
        store.path.write_text(valid_memory, encoding="utf-8")
        assert store.read() == valid_memory
