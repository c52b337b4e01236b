import os

# Server Configuration
REDUCER_HOST = "0.0.0.0"
REDUCER_PORT = int(os.getenv("REDUCER_PORT", 5003))

# Occurrence record fields
OCCURRENCE_FIELDS = ("book_name", "bucket_index", "frequency")

# Task States
TASK_STATES = {
    "IDLE": "idle",
    "IN_PROGRESS": "in_progress",
    "COMPLETED": "completed",
    "FAILED": "failed",
}

# Response Status
STATUS = {"SUCCESS": "success", "ERROR": "error"}

# API Messages
MESSAGES = {
    "MISSING_PARAMS": "Missing required parameters",
    "PARTIALS_NOT_LIST": "partial_indexes must be a list",
}

# Logging Configuration
LOG_FORMAT = "%(asctime)s %(levelname)s:%(message)s"

# Finished tasks kept for /ping before the oldest are dropped
MAX_TRACKED_TASKS = 1000
