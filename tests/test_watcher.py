"""Tests for librarian.watcher.watcher."""

import threading
import time

import pytest

from librarian.core.errors import GenerationError, GenerationFailure
from librarian.pipeline import Outcome, SyncPipeline
from librarian.watcher.state import SyncState
from librarian.watcher.watcher import ChangeWatcher, Phase


APP = "def main():\n    return 1\n"


class BlockingGenerator:
    """Holds the first call until ``release`` is set."""

    def __init__(self, document):
        self.document = document
        self.entered = threading.Event()
        self.release = threading.Event()
        self.calls = 0

    def __call__(self, prompt, system, options):
        self.calls += 1
        if self.calls == 1:
            self.entered.set()
            self.release.wait(10.0)
        return self.document


@pytest.fixture
def watcher(pipeline, config):
    w = ChangeWatcher(
        pipeline,
        debounce_seconds=0.2,
        ignored_paths=(config.state_dir, config.memory_path),
    )
    yield w
    w.stop()


def _wait_for(predicate, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return False


class TestIsSignal:
    @pytest.mark.parametrize(
        "rel", ["HEAD", "index", "packed-refs", "refs/heads/main", "refs/heads/feature/x"]
    )
    def test_signals(self, watcher, rel):
        assert watcher.is_signal(rel)
        assert watcher.is_signal(watcher.git_dir / rel)

    @pytest.mark.parametrize(
        "rel",
        [
            "index.lock",
            "HEAD.lock",
            "refs/heads/main.lock",
            "objects/ab/cdef0123",
            "refs/tags/v1.0",
            "logs/HEAD",
            "ORIG_HEAD",
            "COMMIT_EDITMSG",
        ],
    )
    def test_non_signals(self, watcher, rel):
        assert not watcher.is_signal(rel)

    def test_outside_git_dir(self, watcher, config):
        assert not watcher.is_signal(config.repo_path / "app.py")
        assert not watcher.is_signal(config.state_path)
        assert not watcher.is_signal(config.memory_path)


class TestDebouncedCycles:
    def test_burst_runs_one_cycle(self, watcher, fake_generator, commit):
        commit({"app.py": APP})
        watcher.start(observe=False)
        for _ in range(10):
            assert watcher.notify("HEAD")
            time.sleep(0.01)
        assert watcher.phase is Phase.PENDING_DEBOUNCE
        assert watcher.wait_idle()
        assert watcher.cycles == 1
        assert watcher.last_result.outcome is Outcome.SYNCED
        assert len(fake_generator.calls) == 1

    def test_own_index_write_ignored(self, watcher, fake_generator, commit):
        commit({"app.py": APP})
        watcher.start(observe=False)
        watcher.kick()
        assert watcher.wait_idle()
        assert watcher.last_result.wrote_memory

        assert not watcher.notify(watcher.git_dir / "index")
        assert watcher.phase is Phase.IDLE
        time.sleep(0.4)
        assert watcher.cycles == 1
        assert len(fake_generator.calls) == 1

    def test_foreign_index_write_is_signal(self, watcher, commit, git_repo, git):
        commit({"app.py": APP})
        watcher.start(observe=False)
        watcher.kick()
        assert watcher.wait_idle()

        (git_repo / "other.py").write_text("x = 1\n", encoding="utf-8")
        git("add", "other.py")
        assert watcher.notify(watcher.git_dir / "index")
        assert watcher.wait_idle()
        assert watcher.cycles == 2
        assert watcher.last_result.outcome is Outcome.DRAFT

    def test_stale_processing_flag_reset_on_start(self, watcher, pipeline, fake_generator, commit):
        head = commit({"app.py": APP})
        pipeline.state.save(SyncState(None, is_processing=True))
        watcher.start(observe=False)
        watcher.kick()
        assert watcher.wait_idle()
        assert watcher.last_result.outcome is Outcome.SYNCED
        assert pipeline.state.load() == SyncState(head, False, None)

    def test_failure_reported_then_recovers(self, watcher, pipeline, fake_generator, commit):
        head = commit({"app.py": APP})
        fake_generator.responses = [GenerationError(GenerationFailure.AUTHENTICATION, "bad key")]
        watcher.start(observe=False)

        watcher.kick()
        assert watcher.wait_idle()
        assert watcher.last_result.outcome is Outcome.FAILED
        assert "bad key" in watcher.last_result.detail
        state = pipeline.state.load()
        assert state.last_processed_revision is None
        assert not state.is_processing

        watcher.kick()
        assert watcher.wait_idle()
        assert watcher.last_result.outcome is Outcome.SYNCED
        assert pipeline.state.load().last_processed_revision == head

    def test_signal_during_processing_schedules_one_follow_up(self, config, valid_memory, commit):
        generator = BlockingGenerator(valid_memory)
        pipeline = SyncPipeline.from_config(config, generator=generator)
        watcher = ChangeWatcher(pipeline, debounce_seconds=0.1)
        try:
            commit({"app.py": APP}, "First")
            watcher.start(observe=False)
            watcher.kick()
            assert generator.entered.wait(10.0)
            assert watcher.phase is Phase.PROCESSING

            second = commit({"lib.py": "X = 2\n"}, "Second")
            for _ in range(3):
                assert watcher.notify("HEAD")
            generator.release.set()

            assert _wait_for(lambda: watcher.cycles == 2)
            assert watcher.wait_idle()
            assert watcher.cycles == 2
            assert generator.calls == 2
            assert pipeline.state.load().last_processed_revision == second
        finally:
            generator.release.set()
            watcher.stop()

    def test_stop_cancels_pending_cycle(self, watcher, fake_generator, commit):
        commit({"app.py": APP})
        watcher.start(observe=False)
        watcher.notify("HEAD")
        watcher.stop()
        time.sleep(0.4)
        assert watcher.cycles == 0
        assert watcher.phase is Phase.IDLE
        assert not watcher.notify("HEAD")

    def test_restart_after_stop_runs_cycles(self, watcher, fake_generator, commit):
        commit({"app.py": APP})
        watcher.start(observe=False)
        watcher.stop()
        watcher.start(observe=False)
        assert watcher.notify("HEAD")
        assert watcher.wait_idle()
        assert watcher.cycles == 1
        assert watcher.last_result.outcome is Outcome.SYNCED
        assert len(fake_generator.calls) == 1


class TestObserver:
    def test_commit_triggers_single_update(self, config, fake_generator, commit):
        watcher = ChangeWatcher.from_config(config, generator=fake_generator)
        watcher.start()
        try:
            head = commit({"app.py": APP}, "Add app")
            assert _wait_for(lambda: watcher.pipeline.state.load().last_processed_revision == head)
            time.sleep(1.0)
            assert watcher.wait_idle()
            assert len(fake_generator.calls) == 1
            assert config.memory_path.exists()
        finally:
            watcher.stop()
