from flask import Flask, jsonify, request
import logging
import sys
import threading
from datetime import datetime
from typing import Any, Dict, Optional

from .constants import LOG_FORMAT, MAPPER_HOST, MAPPER_PORT, MAX_TRACKED_TASKS
from .models import DocumentContent
from .processor import MapperProcessor, TokenizationError


class MapperServer:
    def __init__(
        self,
        processor: Optional[MapperProcessor] = None,
        max_tracked_tasks: int = MAX_TRACKED_TASKS,
    ):
        self.app = Flask(__name__)
        self.processor = processor or MapperProcessor.from_env()
        self.logger = logging.getLogger(__name__)
        self.active_tasks = {}
        self.max_tracked_tasks = max_tracked_tasks
        self.task_lock = threading.Lock()
        self.setup_routes()

    def setup_routes(self):
        """Initialize all routes for the mapper server"""
        self.app.route("/test", methods=["GET"])(self.test)
        self.app.route("/map", methods=["POST"])(self.map_document)
        self.app.route("/ping", methods=["GET"])(self.handle_ping)

    def handle_ping(self):
        """Report liveness and the state of documents mapped so far"""
        with self.task_lock:
            return (
                jsonify(
                    {
                        "status": "alive",
                        "bucket_size": self.processor.bucket_size,
                        "tasks": {
                            name: {"state": status["state"], "num_terms": status.get("num_terms", 0)}
                            for name, status in self.active_tasks.items()
                        },
                    }
                ),
                200,
            )

    def update_task_status(self, name: str, state: str, num_terms: int = 0):
        with self.task_lock:
            # most recently updated last, so eviction drops the stalest
            self.active_tasks.pop(name, None)
            self.active_tasks[name] = {
                "state": state,
                "num_terms": num_terms,
                "last_updated": datetime.now().isoformat(),
            }
            excess = len(self.active_tasks) - self.max_tracked_tasks
            if excess > 0:
                finished = [
                    task for task, status in self.active_tasks.items()
                    if status["state"] != "in_progress"
                ]
                for task in finished[:excess]:
                    del self.active_tasks[task]

    def test(self):
        return jsonify({"message": "Mapper is running!"}), 200

    def map_document(self):
        """Build the partial index of one document"""
        data = request.get_json(silent=True)
        validation_result = self._validate_request(data)
        if validation_result:
            return validation_result

        name = data["name"]
        content = DocumentContent(name=name, text=data.get("text") or "")
        processor = self._processor_for(data)
        self.update_task_status(name, "in_progress")
        try:
            partial_index = processor.map_document(content)
        except TokenizationError as e:
            self.logger.error(f"Error tokenizing document {name}: {e}")
            self.update_task_status(name, "failed")
            return jsonify({"status": "error", "name": name, "error": str(e)}), 422

        self.update_task_status(name, "completed", len(partial_index))
        return (
            jsonify({"status": "success", "name": name, "partial_index": partial_index}),
            200,
        )

    def _processor_for(self, data: Dict[str, Any]) -> MapperProcessor:
        """Use the bucketing settings sent by the master, if any"""
        if "bucket_size" not in data and "stop_words" not in data:
            return self.processor
        return MapperProcessor(
            data.get("bucket_size", self.processor.bucket_size),
            data.get("stop_words", self.processor.stop_words),
        )

    def _validate_request(self, data: Any):
        """Validate incoming request data"""
        if not data:
            return jsonify({"error": "No data provided"}), 400
        if not isinstance(data, dict):
            return jsonify({"error": "Request body must be a JSON object"}), 400
        if not isinstance(data.get("name"), str) or not data["name"]:
            return jsonify({"error": "No document name provided"}), 400
        if data.get("text") is not None and not isinstance(data["text"], str):
            return jsonify({"error": "Document text must be a string"}), 400
        if "bucket_size" in data:
            bucket_size = data["bucket_size"]
            if not isinstance(bucket_size, int) or isinstance(bucket_size, bool) or bucket_size < 1:
                return jsonify({"error": "bucket_size must be a positive integer"}), 400
        if "stop_words" in data:
            stop_words = data["stop_words"]
            if not isinstance(stop_words, list) or not all(isinstance(w, str) for w in stop_words):
                return jsonify({"error": "stop_words must be a list of strings"}), 400
        return None

    def run(self, host: str = MAPPER_HOST, port: int = MAPPER_PORT):
        """Run the mapper server"""
        self.app.run(host=host, port=port, threaded=True)


def setup_logging():
    """Configure logging for the application"""
    logging.basicConfig(
        level=logging.INFO,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )


if __name__ == "__main__":
    setup_logging()
    mapper_server = MapperServer()
    mapper_server.run()
