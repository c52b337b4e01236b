"""Pipeline configuration with environment overrides."""

import os
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional

from mapper.src.constants import DEFAULT_BUCKET_SIZE
from mapper.src.processor import load_stop_words

from .constants import (
    DEFAULT_MAX_WORKERS,
    ENV_BUCKET_SIZE,
    ENV_FETCH_TIMEOUT,
    ENV_MAPPER_URLS,
    ENV_MAX_WORKERS,
    ENV_OUTPUT_DIR,
    ENV_REDUCER_URL,
    ENV_STOP_WORDS,
    ENV_STRICT_FETCH,
    FETCH_TIMEOUT,
    OUTPUT_DIR_DEFAULT,
)


def _positive_int(name: str, value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}") from None
    if number < 1:
        raise ValueError(f"{name} must be positive, got {number}")
    return number


def _split_urls(value: str) -> List[str]:
    return [url.strip().rstrip("/") for url in value.split(",") if url.strip()]


@dataclass
class PipelineConfig:
    bucket_size: int = DEFAULT_BUCKET_SIZE
    stop_words: Optional[FrozenSet[str]] = None
    max_workers: int = DEFAULT_MAX_WORKERS
    fetch_timeout: float = FETCH_TIMEOUT
    output_dir: str = OUTPUT_DIR_DEFAULT
    mapper_urls: List[str] = field(default_factory=list)
    reducer_url: Optional[str] = None
    strict_fetch: bool = False

    def __post_init__(self):
        if self.stop_words is None:
            self.stop_words = load_stop_words()
        if self.bucket_size < 1:
            raise ValueError(f"bucket_size must be positive, got {self.bucket_size}")
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be positive, got {self.max_workers}")

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        env = os.environ
        config = cls(
            stop_words=load_stop_words(env.get(ENV_STOP_WORDS)),
            output_dir=env.get(ENV_OUTPUT_DIR, OUTPUT_DIR_DEFAULT),
            mapper_urls=_split_urls(env.get(ENV_MAPPER_URLS, "")),
            reducer_url=env.get(ENV_REDUCER_URL, "").strip().rstrip("/") or None,
            strict_fetch=env.get(ENV_STRICT_FETCH, "").lower() in ("1", "true", "yes"),
        )
        if ENV_BUCKET_SIZE in env:
            config.bucket_size = _positive_int(ENV_BUCKET_SIZE, env[ENV_BUCKET_SIZE])
        if ENV_MAX_WORKERS in env:
            config.max_workers = _positive_int(ENV_MAX_WORKERS, env[ENV_MAX_WORKERS])
        if ENV_FETCH_TIMEOUT in env:
            try:
                config.fetch_timeout = float(env[ENV_FETCH_TIMEOUT])
            except ValueError:
                raise ValueError(
                    f"{ENV_FETCH_TIMEOUT} must be a number, got {env[ENV_FETCH_TIMEOUT]!r}"
                ) from None
        return config
