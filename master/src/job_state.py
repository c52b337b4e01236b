from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
from .constants import JOB_STATES, MESSAGES


class JobInputError(ValueError):
    """Raised when a submitted document list is empty or malformed"""


class InvalidTransition(RuntimeError):
    """Raised when a job is moved to a state its current state cannot reach"""


# state -> states it may move to
TRANSITIONS = {
    JOB_STATES["FETCHING"]: {JOB_STATES["MAPPING"], JOB_STATES["FAILED"]},
    JOB_STATES["MAPPING"]: {JOB_STATES["REDUCING"], JOB_STATES["FAILED"]},
    JOB_STATES["REDUCING"]: {JOB_STATES["DONE"], JOB_STATES["FAILED"]},
    JOB_STATES["DONE"]: set(),
    JOB_STATES["FAILED"]: set(),
}


@dataclass(frozen=True)
class DocumentRef:
    """A document to fetch: its name in the index and where to get it"""

    name: str
    location: str


def parse_documents(payload: Any) -> List[DocumentRef]:
    """
    Validate a submitted document list.
    Accepts a list of {"name", "url"} (or "location") objects, or an object
    holding that list under "documents".
    """
    if isinstance(payload, dict) and "documents" in payload:
        payload = payload["documents"]
    if not isinstance(payload, list):
        raise JobInputError(MESSAGES["BAD_DOCUMENTS"])
    if not payload:
        raise JobInputError(MESSAGES["NO_DOCUMENTS"])

    documents = []
    seen_names = set()
    for i, item in enumerate(payload):
        if isinstance(item, DocumentRef):
            document = item
        elif isinstance(item, dict):
            name = item.get("name")
            location = item.get("url", item.get("location"))
            if not isinstance(name, str) or not name.strip():
                raise JobInputError(f"Document {i} has no name")
            if not isinstance(location, str) or not location.strip():
                raise JobInputError(f"Document {name} has no url")
            document = DocumentRef(name=name, location=location.strip())
        else:
            raise JobInputError(f"Document {i} is not an object")

        # book names key the index buckets
        if document.name in seen_names:
            raise JobInputError(f"Duplicate document name: {document.name}")
        seen_names.add(document.name)
        documents.append(document)
    return documents


@dataclass
class JobState:
    """Represents the state of an entire MapReduce job"""

    job_id: str
    documents: List[DocumentRef]
    state: str = JOB_STATES["FETCHING"]
    start_time: datetime = field(default_factory=datetime.now)
    completion_time: Optional[datetime] = None
    failed_documents: List[str] = field(default_factory=list)
    index: Optional[Dict[str, List[Dict]]] = None
    result_location: Optional[str] = None
    error: Optional[str] = None
    sink_error: Optional[str] = None
    cancel_requested: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.state in (JOB_STATES["DONE"], JOB_STATES["FAILED"])

    def transition(self, new_state: str):
        if new_state not in TRANSITIONS[self.state]:
            raise InvalidTransition(f"Job {self.job_id}: cannot move from {self.state} to {new_state}")
        self.state = new_state
        if self.is_terminal:
            self.completion_time = datetime.now()

    def fail(self, error: str):
        self.error = error
        self.transition(JOB_STATES["FAILED"])

    def to_status(self, include_index: bool = True) -> Dict:
        status = {
            "job_id": self.job_id,
            "state": self.state,
            "documents_total": len(self.documents),
            "failed_documents": list(self.failed_documents),
            "start_time": self.start_time.isoformat(),
            "completion_time": self.completion_time.isoformat() if self.completion_time else None,
            "error": self.error,
            "result_location": self.result_location,
            "sink_error": self.sink_error,
        }
        if include_index and self.state == JOB_STATES["DONE"]:
            status["index"] = self.index
        return status
