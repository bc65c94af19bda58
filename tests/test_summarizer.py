"""Tests for librarian.summarizer."""

import pytest

from librarian.core.errors import ConflictResolutionError
from librarian.core.types import FLASH, PRO
from librarian.summarizer import Summarizer, strip_code_fence
from librarian.vcs.source import OnelineCommit


BUDGET = 1000


@pytest.fixture
def summarizer(fake_generator):
    return Summarizer(fake_generator, token_budget=BUDGET)


class TestStripCodeFence:
    def test_fenced(self):
        assert strip_code_fence("```markdown\n# Doc\n\nBody\n```") == "# Doc\n\nBody"

    def test_plain(self):
        assert strip_code_fence("  # Doc\n") == "# Doc"

    def test_inner_fence_kept(self):
        text = "# Doc\n```python\nx = 1\n```\nmore"
        assert strip_code_fence(text) == text


class TestUpdate:
    def test_empty_diff(self, summarizer, fake_generator):
        with pytest.raises(ValueError):
            summarizer.update("")
        assert fake_generator.calls == []

    def test_small_diff_single_call(self, summarizer, fake_generator, make_diff, valid_memory):
        result = summarizer.update(make_diff(("src/app.py", ["run()"])), valid_memory)
        assert result == valid_memory.strip()
        assert fake_generator.features == ["update"]
        prompt, system, options = fake_generator.calls[0]
        assert prompt.startswith("Current Memory:\n")
        assert "+run()" in prompt
        assert "PROJECT_MEMORY.md" in system
        assert "1,500 words" in system
        assert options.thinking_level == FLASH
        assert options.max_tokens == 8192

    def test_initial_prompt_without_memory(self, summarizer, fake_generator, make_diff):
        summarizer.update(make_diff(("a.py", ["x = 1"])), "", commit_notes=["Add a"])
        prompt = fake_generator.calls[0][0]
        assert "Task: Create PROJECT_MEMORY.md from this diff." in prompt
        assert "- Add a" in prompt

    def test_output_fence_stripped(self, summarizer, fake_generator, make_diff):
        fake_generator.responses = ["```markdown\n# PROJECT_MEMORY\n```"]
        assert summarizer.update(make_diff(("a.py", ["x"]))) == "# PROJECT_MEMORY"

    def test_thinking_level_passed(self, summarizer, fake_generator, make_diff):
        summarizer.update(make_diff(("a.py", ["x"])), thinking_level=PRO)
        assert fake_generator.calls[0][2].thinking_level == PRO


class TestChunkedUpdate:
    def test_three_times_budget_two_chunks_and_merge(self, summarizer, fake_generator, make_diff):
        size = int(BUDGET * 1.5 * 4)
        diff = make_diff(("frontend/app.tsx", ["a" * size]), ("backend/api.py", ["b" * size]))
        fake_generator.responses = ["DOC-A", "DOC-B", "MERGED"]

        result = summarizer.update(diff, "", commit_notes=["Big change"])

        assert result == "MERGED"
        assert fake_generator.features == ["update-chunk", "update-chunk", "merge"]
        first, second, merge = (call[0] for call in fake_generator.calls)
        assert "Chunk 1/2, covering: frontend" in first
        assert "- Big change" in first
        assert "Chunk 2/2, covering: backend" in second
        assert second.startswith("Current Memory:\nDOC-A")
        assert "Big change" not in second
        assert "=== Version 1 ===\nDOC-A" in merge
        assert "=== Version 2 ===\nDOC-B" in merge
        assert fake_generator.calls[2][2].thinking_level == FLASH

    def test_single_chunk_not_merged(self, summarizer, fake_generator, make_diff):
        diff = make_diff(("src/big.py", ["x" * int(BUDGET * 0.75 * 4)]))
        summarizer.update(diff)
        assert fake_generator.features == ["update-chunk"]

    def test_memory_counts_towards_budget(self, summarizer, fake_generator, make_diff):
        memory = "# PROJECT_MEMORY\n" + "word " * int(BUDGET * 0.7)
        summarizer.update(make_diff(("a.py", ["x"])), memory)
        assert fake_generator.features == ["update-chunk"]


class TestInferFromStructure:
    def test_prompt_contents(self, summarizer, fake_generator):
        milestones = [OnelineCommit("r1", "Refactor storage", "2026-03-01T10:00:00+00:00")]
        summarizer.infer_from_structure("src/\n  app.py", "# Demo readme", milestones)
        prompt, _, options = fake_generator.calls[0]
        assert options.thinking_level == PRO
        assert options.feature == "infer"
        assert "src/\n  app.py" in prompt
        assert "# Demo readme" in prompt
        assert "- 2026-03-01 Refactor storage" in prompt
        assert "file structure and README and milestone commits" in prompt

    def test_bare_tree(self, summarizer, fake_generator):
        summarizer.infer_from_structure("")
        prompt = fake_generator.calls[0][0]
        assert "(empty)" in prompt
        assert "README:" not in prompt


class TestConflictMerge:
    def test_low_temperature(self, summarizer, fake_generator, valid_memory):
        merged = summarizer.merge_conflict_markers("<<<<<<< HEAD\na\n=======\nb\n>>>>>>> x\n")
        assert merged == valid_memory.strip()
        options = fake_generator.calls[0][2]
        assert options.temperature == 0.2
        assert options.feature == "conflict-merge"

    def test_residual_markers(self, summarizer, fake_generator, valid_memory):
        fake_generator.responses = [valid_memory + "\n<<<<<<< HEAD\n"]
        with pytest.raises(ConflictResolutionError):
            summarizer.merge_conflict_markers("<<<<<<< HEAD\n")


class TestSummarizeLegacy:
    def test_bullets_normalized_and_capped(self, summarizer, fake_generator):
        fake_generator.responses = ["```\n- first\n* second\n\nthird\n- fourth\n```"]
        bullets = summarizer.summarize_legacy(["- **A**: one", "- **B**: two"])
        assert bullets == ["- first", "- second", "- third"]
        prompt, system, options = fake_generator.calls[0]
        assert "these 2 technical decisions" in prompt
        assert "- **A**: one\n\n- **B**: two" in prompt
        assert "summarizing technical decisions" in system
        assert options.thinking_level == PRO
        assert options.feature == "legacy"
