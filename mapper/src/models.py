from dataclasses import dataclass
from typing import Dict, List, TypedDict


@dataclass(frozen=True)
class DocumentContent:
    """Fetched text of one document. Empty text means the fetch failed."""

    name: str
    text: str = ""


class TermOccurrence(TypedDict):
    """How often a term occurred in one bucket of one document"""

    book_name: str
    bucket_index: int
    frequency: int


# term -> one occurrence per bucket the term appeared in
PartialIndex = Dict[str, List[TermOccurrence]]
