"""Clients for mapper and reducer servers, shaped like the in-process workers."""

import itertools
import logging
import threading
from typing import Dict, Iterable, List, Optional, Sequence

import requests

from mapper.src.models import DocumentContent, PartialIndex
from mapper.src.processor import TokenizationError

from .constants import MAPPER_TIMEOUT, REDUCER_TIMEOUT


class WorkerError(RuntimeError):
    """Raised when a remote worker cannot complete a task"""


def _read_field(response: requests.Response, field: str, worker_url: str):
    """Pull one field out of a worker's JSON reply"""
    try:
        return response.json()[field]
    except (ValueError, KeyError, TypeError) as e:
        raise WorkerError(f"Unreadable reply from {worker_url}: {e!r}") from e


class HttpMapWorker:
    """
    Sends each document to the next mapper in round-robin order.

    When bucket_size or stop_words are given they travel with every request,
    so remote mappers bucket the same way as an in-process one would.
    """

    def __init__(
        self,
        mapper_urls: Sequence[str],
        timeout: float = MAPPER_TIMEOUT,
        bucket_size: Optional[int] = None,
        stop_words: Optional[Iterable[str]] = None,
    ):
        if not mapper_urls:
            raise ValueError("At least one mapper URL is required")
        self.logger = logging.getLogger(__name__)
        self.mapper_urls = list(mapper_urls)
        self.timeout = timeout
        self.bucket_size = bucket_size
        self.stop_words = None if stop_words is None else sorted(stop_words)
        self._next_mapper = itertools.cycle(self.mapper_urls)
        self._lock = threading.Lock()

    def __call__(self, content: DocumentContent) -> PartialIndex:
        with self._lock:
            mapper_url = next(self._next_mapper)

        payload = {"name": content.name, "text": content.text}
        if self.bucket_size is not None:
            payload["bucket_size"] = self.bucket_size
        if self.stop_words is not None:
            payload["stop_words"] = self.stop_words

        self.logger.info(f"Sending document {content.name} to mapper {mapper_url}")
        try:
            response = requests.post(f"{mapper_url}/map", json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise WorkerError(f"Error communicating with mapper {mapper_url}: {e}") from e

        if response.status_code == 422:
            raise TokenizationError(_read_field(response, "error", mapper_url))
        if response.status_code != 200:
            raise WorkerError(f"Mapper {mapper_url} returned HTTP {response.status_code}")
        partial_index = _read_field(response, "partial_index", mapper_url)
        if not isinstance(partial_index, dict):
            raise WorkerError(f"Mapper {mapper_url} returned a malformed partial index")
        return partial_index


class HttpReduceWorker:
    def __init__(self, reducer_url: str, timeout: float = REDUCER_TIMEOUT):
        self.logger = logging.getLogger(__name__)
        self.reducer_url = reducer_url
        self.timeout = timeout

    def __call__(self, partials: Sequence[PartialIndex]) -> Dict[str, List[Dict]]:
        self.logger.info(f"Sending {len(partials)} partial indexes to reducer {self.reducer_url}")
        try:
            response = requests.post(
                f"{self.reducer_url}/reduce",
                json={"partial_indexes": list(partials)},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise WorkerError(f"Error communicating with reducer {self.reducer_url}: {e}") from e

        if response.status_code != 200:
            raise WorkerError(f"Reducer {self.reducer_url} returned HTTP {response.status_code}")
        return _read_field(response, "index", self.reducer_url)
