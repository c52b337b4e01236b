import json
import logging
import os
from datetime import datetime
from typing import Dict, List

from .constants import OUTPUT_DIR_DEFAULT, OUTPUT_FILE_FORMAT


class SinkError(RuntimeError):
    """Raised when the final index cannot be persisted"""


class JsonFileSink:
    """Writes one inverted index per job to a JSON file"""

    def __init__(self, output_dir: str = OUTPUT_DIR_DEFAULT):
        self.logger = logging.getLogger(__name__)
        self.output_dir = output_dir

    def write(self, job_id: str, index: Dict[str, List[Dict]]) -> str:
        """Save the final inverted index and return the file path"""
        output_file = os.path.join(self.output_dir, OUTPUT_FILE_FORMAT.format(job_id=job_id))
        try:
            os.makedirs(self.output_dir, exist_ok=True)
            with open(output_file, "w") as f:
                json.dump(
                    {
                        "metadata": {
                            "job_id": job_id,
                            "creation_time": datetime.now().isoformat(),
                            "num_terms": len(index),
                        },
                        "index": index,
                    },
                    f,
                    indent=2,
                )
        except (OSError, TypeError, ValueError) as e:
            self.logger.error(f"Error saving inverted index for job {job_id}: {e}")
            raise SinkError(f"Could not write {output_file}: {e}") from e

        self.logger.info(f"Inverted index saved to: {os.path.abspath(output_file)}")
        return output_file
