import os

# Server Configuration
MASTER_HOST = "0.0.0.0"
MASTER_PORT = int(os.getenv("MASTER_PORT", 5001))

# Pipeline Configuration
DEFAULT_MAX_WORKERS = 8
# Finished jobs kept in memory before the oldest are evicted
MAX_RETAINED_JOBS = 100
FETCH_TIMEOUT = 30  # seconds, applied by the HTTP fetcher only
MAPPER_TIMEOUT = 60  # seconds
REDUCER_TIMEOUT = 300  # seconds
OUTPUT_DIR_DEFAULT = os.path.join("data", "final")
OUTPUT_FILE_FORMAT = "inverted_index_{job_id}.json"

# Logging Configuration
LOG_FORMAT = "%(asctime)s %(levelname)s:%(message)s"
LOG_LEVEL = "INFO"

# API Response Messages
MESSAGES = {
    "NO_DOCUMENTS": "Document list is empty",
    "BAD_DOCUMENTS": "Document list must be a JSON list of {name, url} objects",
    "JOB_NOT_FOUND": "Job not found",
    "JOB_NOT_DONE": "Job has not finished reducing",
    "JOB_FINISHED": "Job already finished",
    "JOB_CANCELLED": "Job cancelled",
}

# API Status Codes
STATUS = {
    "SUCCESS": "success",
    "ERROR": "error",
}

# Environment Variables
ENV_BUCKET_SIZE = "BUCKET_SIZE"
ENV_STOP_WORDS = "STOP_WORDS"
ENV_MAX_WORKERS = "MAX_WORKERS"
ENV_FETCH_TIMEOUT = "FETCH_TIMEOUT"
ENV_OUTPUT_DIR = "OUTPUT_DIR"
ENV_MAPPER_URLS = "MAPPER_URLS"
ENV_REDUCER_URL = "REDUCER_URL"
ENV_STRICT_FETCH = "STRICT_FETCH"

JOB_STATES = {
    "FETCHING": "fetching",
    "MAPPING": "mapping",
    "REDUCING": "reducing",
    "DONE": "done",
    "FAILED": "failed",
}
