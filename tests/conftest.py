"""Shared fixtures for librarian tests."""

import logging
import subprocess

import pytest

from librarian.core.config import Config
from librarian.pipeline import SyncPipeline


VALID_MEMORY = """# PROJECT_MEMORY

## Project Soul
A small test project used to exercise the synchronizer.

## Tech Stack
- Python 3

## Architecture
CLI -> pipeline -> memory document.

## Core Rules
- Keep functions small.

## Recent Decisions (The "Why")
- **Bootstrap**: created the project skeleton.

## Active Tech Debt
- None yet.
"""


def run_git(repo, *args):
    result = subprocess.run(
        ["git", *args], cwd=repo, check=True, capture_output=True, text=True
    )
    return result.stdout


class FakeGenerator:
    """Records every call; returns queued responses, then ``document``.

    A queued ``BaseException`` instance is raised instead of returned.
    """

    def __init__(self, responses=None, document=VALID_MEMORY):
        self.calls = []
        self.responses = list(responses or [])
        self.document = document

    def __call__(self, prompt, system, options):
        self.calls.append((prompt, system, options))
        if self.responses:
            response = self.responses.pop(0)
            if isinstance(response, BaseException):
                raise response
            return response
        return self.document

    @property
    def features(self):
        return [options.feature for _, _, options in self.calls]


@pytest.fixture
def valid_memory():
    return VALID_MEMORY


@pytest.fixture
def make_generator():
    """Factory for ``FakeGenerator`` instances."""
    return FakeGenerator


@pytest.fixture
def fake_generator():
    return FakeGenerator()


@pytest.fixture
def git_repo(tmp_path):
    """An initialized, empty git repository."""
    repo = tmp_path / "repo"
    repo.mkdir()
    run_git(repo, "init", "-q")
    run_git(repo, "config", "user.email", "tester@example.com")
    run_git(repo, "config", "user.name", "Tester")
    run_git(repo, "config", "commit.gpgsign", "false")
    return repo


@pytest.fixture
def git(git_repo):
    """Run a git command in the test repository and return stdout."""

    def _git(*args):
        return run_git(git_repo, *args)

    return _git


@pytest.fixture
def commit(git_repo):
    """Write files and commit them; returns the new HEAD hash.

    ``commit({"src/app.py": "print(1)\\n"}, "Add app")``
    """

    def _commit(files, message="Update"):
        for rel, content in files.items():
            path = git_repo / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
            run_git(git_repo, "add", "--", rel)
        run_git(git_repo, "commit", "-q", "-m", message)
        return run_git(git_repo, "rev-parse", "HEAD").strip()

    return _commit


@pytest.fixture
def make_diff():
    """Build unified diff text: ``make_diff(("src/a.py", ["x = 1"]), ...)``.

    Each entry adds its lines to a modified file.
    """

    def _make(*entries):
        parts = []
        for path, added in entries:
            parts.append(
                f"diff --git a/{path} b/{path}\n"
                f"index 1111111..2222222 100644\n"
                f"--- a/{path}\n"
                f"+++ b/{path}\n"
                f"@@ -1,1 +1,{len(added) + 1} @@\n"
                f" unchanged\n"
                + "".join(f"+{line}\n" for line in added)
            )
        return "".join(parts)

    return _make


@pytest.fixture
def restore_logging():
    """Undo ``configure_logging`` so caplog keeps working in later tests."""
    logger = logging.getLogger("librarian")
    saved = (list(logger.handlers), logger.propagate, logger.level)
    yield logger
    for handler in logger.handlers:
        if handler not in saved[0]:
            handler.close()
    logger.handlers[:] = saved[0]
    logger.propagate = saved[1]
    logger.setLevel(saved[2])


@pytest.fixture
def config(git_repo, fake_generator):
    """Config bound to the test repository, using the fake generator."""
    cfg = Config.for_repo(
        git_repo,
        llm_provider="custom",
        generator=fake_generator,
        retry_base_delay=0.0,
        debounce_seconds=0.1,
    )
    cfg.ensure_directories()
    return cfg


@pytest.fixture
def pipeline(config, fake_generator):
    return SyncPipeline.from_config(config, generator=fake_generator)
