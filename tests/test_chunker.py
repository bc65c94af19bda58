"""Tests for librarian.diff.chunker."""

import pytest

from librarian.core.tokens import estimate_tokens
from librarian.diff.chunker import CHUNK_FILL_RATIO, chunk_diff, group_key, render_entries
from librarian.diff.model import Diff


@pytest.fixture
def sized_diff(make_diff):
    """``sized_diff(("src/a.py", 400), ...)`` -> Diff with ~N-char added lines."""

    def _make(*entries):
        return Diff.parse(make_diff(*((path, ["x" * size]) for path, size in entries)))

    return _make


class TestGroupKey:
    def test_top_level_file(self):
        assert group_key("README.md") == "root"

    def test_one_dir(self):
        assert group_key("src/app.py") == "src"

    def test_two_dirs_max(self):
        assert group_key("src/core/deep/mod.py") == "src/core"


class TestChunkDiff:
    def test_empty(self):
        assert chunk_diff(Diff(), 1000) == []

    def test_invalid_budget(self, sized_diff):
        with pytest.raises(ValueError):
            chunk_diff(sized_diff(("a.py", 10)), 0)

    def test_small_diff_single_chunk(self, sized_diff):
        diff = sized_diff(("src/a.py", 40), ("src/b.py", 40), ("docs/c.md", 40))
        chunks = chunk_diff(diff, 1000)
        assert len(chunks) == 1
        assert chunks[0].groups == ["src", "docs"]
        assert chunks[0].text.startswith("## Changes in src\n")
        assert "## Changes in docs\n" in chunks[0].text

    @pytest.mark.parametrize("budget", [200, 500, 1000, 5000])
    def test_every_section_exactly_once_in_order(self, sized_diff, budget):
        entries = [(f"pkg{i % 4}/mod{i}.py", 150 + 37 * i) for i in range(25)]
        diff = sized_diff(*entries)
        chunks = chunk_diff(diff, budget)
        flattened = [s for chunk in chunks for s in chunk.sections]
        assert flattened == diff.sections

    def test_multi_entry_chunks_respect_fill_limit(self, sized_diff):
        budget = 1000
        diff = sized_diff(*[(f"dir{i % 3}/f{i}.py", 400) for i in range(30)])
        chunks = chunk_diff(diff, budget)
        assert len(chunks) > 1
        for chunk in chunks:
            if len(chunk.sections) > 1:
                assert chunk.estimated_tokens <= budget * CHUNK_FILL_RATIO

    def test_oversized_section_isolated(self, sized_diff):
        budget = 1000
        diff = sized_diff(("a/small.py", 100), ("b/huge.py", 4 * budget), ("c/small.py", 100))
        chunks = chunk_diff(diff, budget)
        assert [c.sections[0].path for c in chunks] == ["a/small.py", "b/huge.py", "c/small.py"]
        assert chunks[1].oversized

    def test_two_large_directories(self, sized_diff):
        budget = 1000
        size = int(budget * 1.5 * 4)
        diff = sized_diff(("frontend/app.tsx", size), ("backend/api.py", size))
        chunks = chunk_diff(diff, budget)
        assert len(chunks) == 2
        assert [c.groups for c in chunks] == [["frontend"], ["backend"]]

    def test_to_diff_renders_source_sections(self, sized_diff):
        diff = sized_diff(("a.py", 20), ("b.py", 20))
        (chunk,) = chunk_diff(diff, 1000)
        assert chunk.to_diff().render() == diff.render()

    def test_many_files_packed_tightly(self, sized_diff):
        budget = 2000
        diff = sized_diff(*[(f"pkg{i // 50}/f{i}.py", 30) for i in range(3000)])
        chunks = chunk_diff(diff, budget)
        assert [s for c in chunks for s in c.sections] == diff.sections
        for chunk, following in zip(chunks, chunks[1:]):
            assert chunk.estimated_tokens <= budget * CHUNK_FILL_RATIO
            # one more section would have crossed the fill limit
            overfull = render_entries(chunk.entries + following.entries[:1])
            assert estimate_tokens(overfull) > budget * CHUNK_FILL_RATIO
