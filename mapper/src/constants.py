# mapper/src/constants.py
import os

# Server Configuration
MAPPER_HOST = "0.0.0.0"
MAPPER_PORT = int(os.getenv("MAPPER_PORT", 5002))

# Bucketing
DEFAULT_BUCKET_SIZE = 5000
TOKEN_SEPARATORS = " \t\r\n"

# Stop words
DEFAULT_STOP_WORDS = frozenset({"a", "an", "the", "or", "and", "but", "with"})
NLTK_STOP_WORDS_SOURCE = "nltk"
NLTK_DATA_DEFAULT = "/opt/nltk_data"

# Environment Variables
ENV_BUCKET_SIZE = "BUCKET_SIZE"
ENV_STOP_WORDS = "STOP_WORDS"
ENV_NLTK_DATA = "NLTK_DATA"

# Logging Configuration
LOG_FORMAT = "%(asctime)s %(levelname)s:%(message)s"

# Finished tasks kept for /ping before the oldest are dropped
MAX_TRACKED_TASKS = 1000
