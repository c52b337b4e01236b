import json
import logging
from typing import Dict, List, Sequence, Tuple, Union

from .constants import OCCURRENCE_FIELDS

# (book_name, bucket_index)
BucketKey = Tuple[str, int]

# term -> [{"book_name", "bucket_index", "frequency"}]
Index = Dict[str, List[Dict]]


class ReducerProcessor:
    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def process_partial_indexes(self, partials: Sequence[Union[Index, str]]) -> Index:
        """
        Fold partial indexes into one inverted index.

        Frequencies are summed per (term, book_name, bucket_index); an entry is
        never overwritten. Inputs are not modified. The result does not depend
        on the order of the partials: terms come out sorted and each term's
        occurrences are ordered by (book_name, bucket_index).
        """
        self.logger.info(f"Received {len(partials)} partial indexes to process")

        merged: Dict[str, Dict[BucketKey, Dict]] = {}
        for i, partial in enumerate(self._parse(partials)):
            self.logger.debug(f"Processing partial index {i+1}/{len(partials)}")
            for term, occurrences in partial.items():
                if not isinstance(occurrences, list):
                    self.logger.error(f"Skipping term '{term}': occurrences is not a list")
                    continue
                buckets = merged.setdefault(term, {})
                for occurrence in occurrences:
                    if not self._is_valid_occurrence(occurrence):
                        self.logger.error(
                            f"Skipping malformed occurrence for term '{term}': {occurrence}"
                        )
                        continue
                    key = (occurrence["book_name"], occurrence["bucket_index"])
                    existing = buckets.get(key)
                    if existing is not None:
                        existing["frequency"] += occurrence["frequency"]
                    else:
                        buckets[key] = {field: occurrence[field] for field in OCCURRENCE_FIELDS}

        inverted_index = {
            term: [merged[term][key] for key in sorted(merged[term])]
            for term in sorted(merged)
            if merged[term]
        }

        self.logger.info(f"Created inverted index with {len(inverted_index)} terms")
        if not inverted_index:
            self.logger.warning("Inverted index is empty!")
        return inverted_index

    def merge_indexes(self, left: Index, right: Index) -> Index:
        """Sum two indexes term by term and bucket by bucket"""
        return self.process_partial_indexes([left, right])

    def _parse(self, partials: Sequence[Union[Index, str]]) -> List[Index]:
        parsed = []
        for partial in partials:
            if isinstance(partial, str):
                try:
                    partial = json.loads(partial)
                except json.JSONDecodeError as e:
                    self.logger.error(f"Failed to parse partial index as JSON: {e}")
                    self.logger.error(f"Problematic data: {partial[:200]}...")
                    continue
            if not isinstance(partial, dict):
                self.logger.error(f"Skipping partial index of type {type(partial).__name__}")
                continue
            parsed.append(partial)
        return parsed

    @staticmethod
    def _is_valid_occurrence(occurrence) -> bool:
        if not isinstance(occurrence, dict):
            return False
        if not all(field in occurrence for field in OCCURRENCE_FIELDS):
            return False
        bucket_index = occurrence["bucket_index"]
        frequency = occurrence["frequency"]
        return (
            isinstance(occurrence["book_name"], str)
            and isinstance(bucket_index, int)
            and not isinstance(bucket_index, bool)
            and bucket_index >= 0
            and isinstance(frequency, int)
            and not isinstance(frequency, bool)
            and frequency >= 1
        )
