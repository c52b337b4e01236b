import logging
import os
import re
import unicodedata
from typing import Dict, Iterable, Iterator, Optional, Tuple, Union

import nltk
from nltk.corpus import stopwords

from .constants import (
    DEFAULT_BUCKET_SIZE,
    DEFAULT_STOP_WORDS,
    ENV_BUCKET_SIZE,
    ENV_NLTK_DATA,
    ENV_STOP_WORDS,
    NLTK_DATA_DEFAULT,
    NLTK_STOP_WORDS_SOURCE,
    TOKEN_SEPARATORS,
)
from .models import DocumentContent, PartialIndex, TermOccurrence

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(f"[^{re.escape(TOKEN_SEPARATORS)}]+")


class TokenizationError(ValueError):
    """Raised when document text cannot be decoded"""


def normalize_token(token: str) -> str:
    """Strip every punctuation character and lower-case what remains."""
    return "".join(
        ch for ch in token if not unicodedata.category(ch).startswith("P")
    ).lower()


def _ensure_text(text: Union[str, bytes]) -> str:
    if isinstance(text, bytes):
        try:
            return text.decode("utf-8")
        except UnicodeDecodeError as e:
            raise TokenizationError(f"Undecodable document text: {e}") from e
    try:
        # lone surrogates survive str construction but are not valid text
        text.encode("utf-8")
    except UnicodeEncodeError as e:
        raise TokenizationError(f"Malformed document text: {e}") from e
    return text


def iter_bucketed_terms(
    text: Union[str, bytes],
    stop_words: Iterable[str] = DEFAULT_STOP_WORDS,
    bucket_size: int = DEFAULT_BUCKET_SIZE,
) -> Iterator[Tuple[str, int]]:
    """
    Lazily yield (term, bucket_index) pairs for a document.

    Bucket boundaries are computed on the raw token position, so discarded
    tokens (stop words, pure punctuation) still occupy their slot.
    """
    if bucket_size < 1:
        raise ValueError(f"bucket_size must be positive, got {bucket_size}")
    text = _ensure_text(text)
    stop_words = frozenset(stop_words)

    for position, match in enumerate(_TOKEN_RE.finditer(text)):
        term = normalize_token(match.group())
        if not term or term in stop_words:
            continue
        yield term, position // bucket_size


def load_stop_words(source: Optional[str] = None) -> frozenset:
    """
    Resolve a stop-word set from a configuration value:
    - None or "default": the built-in list
    - "nltk": NLTK's English stop-word corpus
    - anything else: a comma-separated list of words
    """
    if source is None or source.strip().lower() in ("", "default"):
        return DEFAULT_STOP_WORDS

    if source.strip().lower() == NLTK_STOP_WORDS_SOURCE:
        nltk_data_path = os.environ.get(ENV_NLTK_DATA, NLTK_DATA_DEFAULT)
        if nltk_data_path not in nltk.data.path:
            nltk.data.path.append(nltk_data_path)
        try:
            words = frozenset(normalize_token(w) for w in stopwords.words("english"))
        except Exception as e:
            logger.error(f"Failed to load stopwords: {e}", exc_info=True)
            raise
        logger.info(f"Successfully loaded {len(words)} stop words")
        return words

    words = (normalize_token(w.strip()) for w in source.split(","))
    return frozenset(w for w in words if w)


class MapperProcessor:
    def __init__(
        self,
        bucket_size: int = DEFAULT_BUCKET_SIZE,
        stop_words: Optional[Iterable[str]] = None,
    ):
        if bucket_size < 1:
            raise ValueError(f"bucket_size must be positive, got {bucket_size}")
        self.logger = logging.getLogger(__name__)
        self.bucket_size = bucket_size
        if stop_words is None:
            self.stop_words = DEFAULT_STOP_WORDS
        else:
            words = (normalize_token(w) for w in stop_words)
            self.stop_words = frozenset(w for w in words if w)

    @classmethod
    def from_env(cls) -> "MapperProcessor":
        bucket_size = int(os.getenv(ENV_BUCKET_SIZE, DEFAULT_BUCKET_SIZE))
        return cls(bucket_size, load_stop_words(os.getenv(ENV_STOP_WORDS)))

    def tokenize(self, text: Union[str, bytes]) -> Iterator[Tuple[str, int]]:
        return iter_bucketed_terms(text, self.stop_words, self.bucket_size)

    def map_document(self, content: DocumentContent) -> PartialIndex:
        """Build the partial index of one document: term -> per-bucket counts"""
        if not content.text:
            self.logger.info(f"No content for document {content.name}")
            return {}

        buckets_by_term: Dict[str, Dict[int, TermOccurrence]] = {}
        for term, bucket_index in self.tokenize(content.text):
            buckets = buckets_by_term.setdefault(term, {})
            occurrence = buckets.get(bucket_index)
            if occurrence is None:
                buckets[bucket_index] = {
                    "book_name": content.name,
                    "bucket_index": bucket_index,
                    "frequency": 1,
                }
            else:
                occurrence["frequency"] += 1

        self.logger.info(
            f"Processed document {content.name}: found {len(buckets_by_term)} unique terms"
        )
        return {
            term: list(buckets.values()) for term, buckets in buckets_by_term.items()
        }
