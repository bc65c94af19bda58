"""
librarian.core.config -- Configuration for the memory synchronizer.

Supports loading from YAML, environment variables, and programmatic
construction.  Provider callables are built lazily so optional
dependencies (openai, anthropic) are only imported when selected.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from librarian.core.errors import GenerationError, GenerationFailure
from librarian.core.types import PRO, GenerationOptions, Generator

if TYPE_CHECKING:
    from librarian.generation.usage import UsageLedger

log = logging.getLogger(__name__)

def _positive_int(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise ValueError(f"expected a positive integer, got {value!r}")
    return number


#: Environment variable -> (field name, converter)
ENV_OVERRIDES = {
    "LIBRARIAN_PROVIDER": ("llm_provider", str),
    "LIBRARIAN_MODEL": ("llm_model", str),
    "LIBRARIAN_PRO_MODEL": ("llm_pro_model", str),
    "LIBRARIAN_BASE_URL": ("llm_base_url", str),
    "LIBRARIAN_LLM_API_KEY": ("llm_api_key", str),
    "LIBRARIAN_MAX_TOKENS": ("token_budget", _positive_int),
    "LIBRARIAN_DEBOUNCE_MS": ("debounce_seconds", lambda v: int(v) / 1000.0),
}


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


@dataclass
class Config:
    """
    Central configuration object.

    Construct directly, via ``Config.for_repo(path)``, via
    ``Config.from_yaml(path)``, or via ``Config.load(repo)`` which reads
    ``.librarian/config.yaml`` and then the ``LIBRARIAN_*`` environment.
    """

    # -- repository ---------------------------------------------------------
    repo_path: Path = field(default_factory=Path.cwd)
    memory_filename: str = "PROJECT_MEMORY.md"
    state_dirname: str = ".librarian"

    # -- generation budget --------------------------------------------------
    token_budget: int = 50_000  # context window used for sizing decisions
    max_output_tokens: int = 8192
    temperature: float = 0.3

    # -- memory document ----------------------------------------------------
    soft_word_cap: int = 1500
    keep_recent_decisions: int = 5

    # -- watcher ------------------------------------------------------------
    debounce_seconds: float = 0.5

    # -- retry policy -------------------------------------------------------
    retry_attempts: int = 3
    retry_base_delay: float = 1.0

    # -- LLM provider -------------------------------------------------------
    llm_provider: str = "ollama"  # "ollama" | "openai" | "anthropic" | "custom"
    llm_model: str = "llama3.2"
    llm_pro_model: str = ""  # empty = same as llm_model
    llm_base_url: str = "http://localhost:11434"
    llm_api_key: Optional[str] = field(
        default_factory=lambda: os.environ.get("LIBRARIAN_LLM_API_KEY")
    )
    generator: Optional[Generator] = field(default=None, repr=False)

    # -- noise filter -------------------------------------------------------
    ignore_patterns: List[str] = field(default_factory=list)

    # -- logging ------------------------------------------------------------
    structured_logging: bool = False
    log_level: str = "INFO"

    # -----------------------------------------------------------------------
    # Derived paths
    # -----------------------------------------------------------------------

    @property
    def state_dir(self) -> Path:
        return self.repo_path / self.state_dirname

    @property
    def state_path(self) -> Path:
        return self.state_dir / "state.json"

    @property
    def memory_path(self) -> Path:
        return self.repo_path / self.memory_filename

    @property
    def usage_path(self) -> Path:
        return self.state_dir / "token-usage.json"

    @property
    def config_path(self) -> Path:
        return self.state_dir / "config.yaml"

    @property
    def log_path(self) -> Path:
        return self.state_dir / "librarian.log"

    @property
    def pro_model(self) -> str:
        return self.llm_pro_model or self.llm_model

    # -----------------------------------------------------------------------
    # Construction helpers
    # -----------------------------------------------------------------------

    def __post_init__(self) -> None:
        self.repo_path = Path(self.repo_path).resolve()
        self.validate()

    def validate(self) -> None:
        """Raise ``ValueError`` for settings no cycle can run with."""
        if not isinstance(self.token_budget, int) or self.token_budget <= 0:
            raise ValueError(f"token_budget must be positive, got {self.token_budget!r}")

    @classmethod
    def for_repo(cls, repo_path: str | Path, **overrides: Any) -> "Config":
        """Quick constructor pointing at a repository."""
        return cls(repo_path=Path(repo_path), **overrides)

    @classmethod
    def from_yaml(cls, path: str | Path, **overrides: Any) -> "Config":
        """Load configuration from a YAML file.

        Keys may sit at the top level or under a ``librarian:`` section.
        Unknown keys are ignored so the file can carry other settings.
        """
        import yaml

        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "r", encoding="utf-8") as fh:
            raw: Dict[str, Any] = yaml.safe_load(fh) or {}

        data = raw.get("librarian", raw)
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")

        if "repo_path" in data:
            data["repo_path"] = Path(data["repo_path"])

        known = {f.name for f in cls.__dataclass_fields__.values()}
        filtered = {k: v for k, v in data.items() if k in known and k != "generator"}
        filtered.update(overrides)
        return cls(**filtered)

    @classmethod
    def load(
        cls,
        repo_path: str | Path,
        environ: Optional[Dict[str, str]] = None,
        **overrides: Any,
    ) -> "Config":
        """Repository config file, then environment, then *overrides*."""
        repo_path = Path(repo_path).resolve()
        defaults = cls(repo_path=repo_path)
        if defaults.config_path.exists():
            config = cls.from_yaml(defaults.config_path, repo_path=repo_path)
        else:
            config = defaults

        config.apply_env(os.environ if environ is None else environ)
        for key, value in overrides.items():
            setattr(config, key, value)
        config.validate()
        return config

    def apply_env(self, environ: Dict[str, str]) -> None:
        """Apply ``LIBRARIAN_*`` overrides; malformed or non-positive numbers are ignored."""
        for var, (name, convert) in ENV_OVERRIDES.items():
            value = environ.get(var)
            if not value:
                continue
            try:
                setattr(self, name, convert(value))
            except ValueError:
                log.warning("Ignoring malformed %s=%r", var, value)

    # -----------------------------------------------------------------------
    # Directory bootstrapping
    # -----------------------------------------------------------------------

    def ensure_directories(self) -> None:
        """Create the tool-private state directory if it doesn't exist."""
        self.state_dir.mkdir(parents=True, exist_ok=True)

    # -----------------------------------------------------------------------
    # Generator callable
    # -----------------------------------------------------------------------

    def generation_options(self, thinking_level: str, **overrides: Any) -> GenerationOptions:
        values: Dict[str, Any] = {
            "thinking_level": thinking_level,
            "max_tokens": self.max_output_tokens,
            "temperature": self.temperature,
        }
        values.update(overrides)
        return GenerationOptions(**values)

    def get_generator(self, ledger: Optional["UsageLedger"] = None) -> Generator:
        """Return the configured generator wrapped in the retry policy.

        If ``generator`` was set directly (custom provider), it is used
        as the underlying callable.  Otherwise one is built from the
        provider / model / url / key settings.
        """
        from librarian.generation.retry import RetryingGenerator

        return RetryingGenerator(
            self.get_raw_generator(ledger),
            max_attempts=self.retry_attempts,
            base_delay=self.retry_base_delay,
        )

    def get_raw_generator(self, ledger: Optional["UsageLedger"] = None) -> Generator:
        """Return the provider callable without retry."""
        if self.generator is not None:
            return self.generator

        provider = self.llm_provider.lower()

        if provider == "ollama":
            return self._build_ollama_generator(ledger)
        elif provider == "openai":
            return self._build_openai_generator(ledger)
        elif provider == "anthropic":
            return self._build_anthropic_generator(ledger)
        elif provider == "custom":
            raise GenerationError(
                GenerationFailure.CONFIGURATION,
                "llm_provider is 'custom' but no generator was provided. "
                "Pass a callable via Config(generator=my_func).",
            )
        else:
            raise GenerationError(
                GenerationFailure.CONFIGURATION, f"Unknown llm_provider: {provider!r}"
            )

    def _model_for(self, options: GenerationOptions) -> str:
        return self.pro_model if options.thinking_level == PRO else self.llm_model

    def _record_usage(
        self,
        ledger: Optional["UsageLedger"],
        options: GenerationOptions,
        model: str,
        input_tokens: int,
        output_tokens: int,
    ) -> None:
        from librarian.generation.usage import llm_usage

        llm_usage.record(input_tokens=input_tokens, output_tokens=output_tokens)
        if ledger is not None:
            try:
                ledger.record(
                    feature=options.feature,
                    model=model,
                    provider=self.llm_provider,
                    input_tokens=input_tokens,
                    output_tokens=output_tokens,
                )
            except OSError as exc:
                log.warning("Could not persist token usage: %s", exc)

    # -- provider builders (private) ----------------------------------------

    def _build_ollama_generator(self, ledger: Optional["UsageLedger"]) -> Generator:
        """Build a generator targeting Ollama's /api/generate."""
        import httpx

        base_url = self.llm_base_url.rstrip("/")
        # One client per generator so calls share a connection pool.
        client = httpx.Client(timeout=300.0)

        def ollama_generate(prompt: str, system: str, options: GenerationOptions) -> str:
            model = self._model_for(options)
            payload: Dict[str, Any] = {
                "model": model,
                "prompt": prompt,
                "stream": False,
                "options": {
                    "temperature": options.temperature,
                    "num_predict": options.max_tokens,
                },
            }
            if system:
                payload["system"] = system

            try:
                resp = client.post(f"{base_url}/api/generate", json=payload)
                resp.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise GenerationError(
                    classify_status(exc.response.status_code),
                    f"HTTP {exc.response.status_code}: {exc.response.text[:200]}",
                    provider="ollama",
                ) from exc
            except httpx.TransportError as exc:
                raise GenerationError(
                    GenerationFailure.TRANSIENT,
                    f"Cannot reach Ollama at {base_url}: {exc}",
                    provider="ollama",
                ) from exc

            try:
                data = resp.json()
            except ValueError as exc:
                raise GenerationError(
                    GenerationFailure.TRANSIENT,
                    f"Ollama returned non-JSON response "
                    f"(status {resp.status_code}): {resp.text[:200]}",
                    provider="ollama",
                ) from exc

            self._record_usage(
                ledger,
                options,
                model,
                input_tokens=data.get("prompt_eval_count", 0),
                output_tokens=data.get("eval_count", 0),
            )
            return data.get("response", "").strip()

        return ollama_generate

    def _build_openai_generator(self, ledger: Optional["UsageLedger"]) -> Generator:
        """Build a generator targeting an OpenAI-compatible API."""
        try:
            import openai
        except ImportError:
            raise ImportError(
                "openai is required for the OpenAI provider. "
                "Install it with:  pip install 'librarian[openai]'"
            )

        api_key = self.llm_api_key or os.environ.get("OPENAI_API_KEY", "")
        if not api_key:
            raise GenerationError(
                GenerationFailure.AUTHENTICATION,
                "No API key configured. Set LIBRARIAN_LLM_API_KEY or OPENAI_API_KEY.",
                provider="openai",
            )

        # Only set base_url when it differs from the default Ollama URL,
        # meaning the user intentionally pointed at a custom endpoint.
        client_kwargs: Dict[str, Any] = {"api_key": api_key}
        if self.llm_base_url and self.llm_base_url != "http://localhost:11434":
            client_kwargs["base_url"] = self.llm_base_url

        # One client per generator so calls share a connection pool.
        client = openai.OpenAI(**client_kwargs)

        def openai_generate(prompt: str, system: str, options: GenerationOptions) -> str:
            model = self._model_for(options)
            messages = []
            if system:
                messages.append({"role": "system", "content": system})
            messages.append({"role": "user", "content": prompt})

            try:
                response = client.chat.completions.create(
                    model=model,
                    messages=messages,
                    max_tokens=options.max_tokens,
                    temperature=options.temperature,
                )
            except (openai.AuthenticationError, openai.PermissionDeniedError) as exc:
                raise GenerationError(
                    GenerationFailure.AUTHENTICATION, str(exc), provider="openai"
                ) from exc
            except openai.RateLimitError as exc:
                raise GenerationError(
                    GenerationFailure.RATE_LIMIT, str(exc), provider="openai"
                ) from exc
            except openai.BadRequestError as exc:
                category = GenerationFailure.CONFIGURATION
                if _mentions_safety(str(exc)):
                    category = GenerationFailure.CONTENT_SAFETY
                raise GenerationError(category, str(exc), provider="openai") from exc
            except openai.APIStatusError as exc:
                raise GenerationError(
                    classify_status(exc.status_code), str(exc), provider="openai"
                ) from exc
            except openai.APIConnectionError as exc:
                raise GenerationError(
                    GenerationFailure.TRANSIENT, str(exc), provider="openai"
                ) from exc

            if not response.choices:
                raise GenerationError(
                    GenerationFailure.TRANSIENT,
                    "OpenAI returned no choices",
                    provider="openai",
                )
            choice = response.choices[0]
            if choice.finish_reason == "content_filter":
                raise GenerationError(
                    GenerationFailure.CONTENT_SAFETY,
                    "Response withheld by the provider's content filter",
                    provider="openai",
                )
            if response.usage:
                self._record_usage(
                    ledger,
                    options,
                    model,
                    input_tokens=response.usage.prompt_tokens or 0,
                    output_tokens=response.usage.completion_tokens or 0,
                )
            return (choice.message.content or "").strip()

        return openai_generate

    def _build_anthropic_generator(self, ledger: Optional["UsageLedger"]) -> Generator:
        """Build a generator targeting the Anthropic API."""
        try:
            import anthropic
        except ImportError:
            raise ImportError(
                "anthropic is required for the Anthropic provider. "
                "Install it with:  pip install 'librarian[anthropic]'"
            )

        api_key = self.llm_api_key or os.environ.get("ANTHROPIC_API_KEY", "")
        if not api_key:
            raise GenerationError(
                GenerationFailure.AUTHENTICATION,
                "No API key configured. Set LIBRARIAN_LLM_API_KEY or ANTHROPIC_API_KEY.",
                provider="anthropic",
            )

        # One client per generator so calls share a connection pool.
        client = anthropic.Anthropic(api_key=api_key)

        def anthropic_generate(prompt: str, system: str, options: GenerationOptions) -> str:
            model = self._model_for(options)
            kwargs: Dict[str, Any] = {
                "model": model,
                "max_tokens": options.max_tokens,
                "temperature": options.temperature,
                "messages": [{"role": "user", "content": prompt}],
            }
            if system:
                kwargs["system"] = system

            try:
                response = client.messages.create(**kwargs)
            except (anthropic.AuthenticationError, anthropic.PermissionDeniedError) as exc:
                raise GenerationError(
                    GenerationFailure.AUTHENTICATION, str(exc), provider="anthropic"
                ) from exc
            except anthropic.RateLimitError as exc:
                raise GenerationError(
                    GenerationFailure.RATE_LIMIT, str(exc), provider="anthropic"
                ) from exc
            except anthropic.APIStatusError as exc:
                category = classify_status(exc.status_code)
                if category is GenerationFailure.CONFIGURATION and _mentions_safety(str(exc)):
                    category = GenerationFailure.CONTENT_SAFETY
                raise GenerationError(category, str(exc), provider="anthropic") from exc
            except anthropic.APIConnectionError as exc:
                raise GenerationError(
                    GenerationFailure.TRANSIENT, str(exc), provider="anthropic"
                ) from exc

            if getattr(response, "stop_reason", None) == "refusal":
                raise GenerationError(
                    GenerationFailure.CONTENT_SAFETY,
                    "Model refused to answer",
                    provider="anthropic",
                )
            if getattr(response, "usage", None):
                self._record_usage(
                    ledger,
                    options,
                    model,
                    input_tokens=getattr(response.usage, "input_tokens", 0),
                    output_tokens=getattr(response.usage, "output_tokens", 0),
                )
            # response.content is a list of content blocks
            parts = [block.text for block in response.content if hasattr(block, "text")]
            return "".join(parts).strip()

        return anthropic_generate

    # -----------------------------------------------------------------------
    # Serialisation
    # -----------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Serialise to a plain dict (YAML/JSON-safe, no callables or secrets)."""
        return {
            "repo_path": str(self.repo_path),
            "memory_filename": self.memory_filename,
            "state_dirname": self.state_dirname,
            "token_budget": self.token_budget,
            "max_output_tokens": self.max_output_tokens,
            "temperature": self.temperature,
            "soft_word_cap": self.soft_word_cap,
            "keep_recent_decisions": self.keep_recent_decisions,
            "debounce_seconds": self.debounce_seconds,
            "retry_attempts": self.retry_attempts,
            "retry_base_delay": self.retry_base_delay,
            "llm_provider": self.llm_provider,
            "llm_model": self.llm_model,
            "llm_pro_model": self.pro_model,
            "llm_base_url": self.llm_base_url,
            "ignore_patterns": list(self.ignore_patterns),
            "structured_logging": self.structured_logging,
            "log_level": self.log_level,
        }


# ---------------------------------------------------------------------------
# Error classification helpers
# ---------------------------------------------------------------------------

_SAFETY_MARKERS = ("content_filter", "content_policy", "safety", "moderation")


def classify_status(status_code: int) -> GenerationFailure:
    """Map an HTTP status code to a failure category."""
    if status_code in (401, 403):
        return GenerationFailure.AUTHENTICATION
    if status_code == 429:
        return GenerationFailure.RATE_LIMIT
    if status_code in (408, 409) or status_code >= 500:
        return GenerationFailure.TRANSIENT
    return GenerationFailure.CONFIGURATION


def _mentions_safety(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in _SAFETY_MARKERS)
