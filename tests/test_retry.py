"""Tests for librarian.generation.retry."""

import pytest

from librarian.core.errors import GenerationError, GenerationFailure
from librarian.core.types import GenerationOptions
from librarian.generation.retry import RetryingGenerator


OPTIONS = GenerationOptions(feature="update")


def _transient(message="boom"):
    return GenerationError(GenerationFailure.TRANSIENT, message, provider="test")


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def wrap(sleeps):
    def _wrap(inner, **kwargs):
        return RetryingGenerator(inner, sleep=sleeps.append, **kwargs)

    return _wrap


class TestRetryingGenerator:
    def test_first_attempt_succeeds(self, wrap, sleeps, make_generator):
        inner = make_generator(responses=["doc"])
        assert wrap(inner)("p", "s", OPTIONS) == "doc"
        assert len(inner.calls) == 1
        assert sleeps == []

    def test_one_transient_failure(self, wrap, sleeps, make_generator):
        inner = make_generator(responses=[_transient(), "doc"])
        assert wrap(inner)("p", "s", OPTIONS) == "doc"
        assert sleeps == [1.0]

    def test_two_failures_backoff_doubles(self, wrap, sleeps, make_generator):
        inner = make_generator(responses=[_transient(), _transient(), "doc"])
        assert wrap(inner)("p", "s", OPTIONS) == "doc"
        assert sleeps == [1.0, 2.0]

    def test_exhausted_raises_with_attempts(self, wrap, sleeps, make_generator):
        inner = make_generator(responses=[_transient()] * 3)
        with pytest.raises(GenerationError) as excinfo:
            wrap(inner)("p", "s", OPTIONS)
        assert excinfo.value.attempts == 3
        assert excinfo.value.category is GenerationFailure.TRANSIENT
        assert len(inner.calls) == 3
        assert sleeps == [1.0, 2.0]

    def test_rate_limit_retried(self, wrap, make_generator):
        inner = make_generator(
            responses=[GenerationError(GenerationFailure.RATE_LIMIT, "429"), "doc"]
        )
        assert wrap(inner)("p", "s", OPTIONS) == "doc"

    @pytest.mark.parametrize(
        "category",
        [
            GenerationFailure.AUTHENTICATION,
            GenerationFailure.CONTENT_SAFETY,
            GenerationFailure.CONFIGURATION,
        ],
    )
    def test_permanent_failures_not_retried(self, wrap, sleeps, make_generator, category):
        inner = make_generator(responses=[GenerationError(category, "nope"), "doc"])
        with pytest.raises(GenerationError) as excinfo:
            wrap(inner)("p", "s", OPTIONS)
        assert excinfo.value.category is category
        assert excinfo.value.attempts == 1
        assert len(inner.calls) == 1
        assert sleeps == []

    def test_empty_response_is_transient(self, wrap, sleeps, make_generator):
        inner = make_generator(responses=["", "   \n", "doc"])
        assert wrap(inner)("p", "s", OPTIONS) == "doc"
        assert sleeps == [1.0, 2.0]

    def test_os_error_wrapped(self, wrap, make_generator):
        inner = make_generator(responses=[ConnectionResetError("reset")] * 3)
        with pytest.raises(GenerationError) as excinfo:
            wrap(inner)("p", "s", OPTIONS)
        assert excinfo.value.category is GenerationFailure.TRANSIENT
        assert "reset" in str(excinfo.value)

    def test_custom_attempts_and_delay(self, wrap, sleeps, make_generator):
        inner = make_generator(responses=[_transient()] * 5)
        with pytest.raises(GenerationError):
            wrap(inner, max_attempts=4, base_delay=0.5)("p", "s", OPTIONS)
        assert sleeps == [0.5, 1.0, 2.0]

    def test_invalid_attempts(self, make_generator):
        with pytest.raises(ValueError):
            RetryingGenerator(make_generator(), max_attempts=0)

    def test_options_passed_through(self, wrap, make_generator):
        inner = make_generator(responses=["doc"])
        wrap(inner)("prompt", "system", OPTIONS)
        assert inner.calls == [("prompt", "system", OPTIONS)]
