from flask import Flask, jsonify, request
import logging
import sys
import threading
from datetime import datetime
from typing import Optional

from .processor import ReducerProcessor
from .constants import (
    LOG_FORMAT,
    MAX_TRACKED_TASKS,
    MESSAGES,
    REDUCER_HOST,
    REDUCER_PORT,
    STATUS,
    TASK_STATES,
)


class ReducerServer:
    def __init__(
        self,
        processor: Optional[ReducerProcessor] = None,
        max_tracked_tasks: int = MAX_TRACKED_TASKS,
    ):
        self.app = Flask(__name__)
        self.processor = processor or ReducerProcessor()
        self.logger = logging.getLogger(__name__)
        self.active_tasks = {}
        self.max_tracked_tasks = max_tracked_tasks
        self.task_lock = threading.Lock()
        self.setup_routes()

    def setup_routes(self):
        """Initialize all routes for the reducer server"""
        self.app.route("/ping", methods=["GET"])(self.handle_ping)
        self.app.route("/reduce", methods=["POST"])(self.reduce_results)

    def handle_ping(self):
        """Handle ping request from master"""
        self.logger.info("Received heartbeat")
        with self.task_lock:
            return (
                jsonify(
                    {
                        "status": "alive",
                        "tasks": {
                            task_id: {
                                "state": status["state"],
                                "num_terms": status.get("num_terms", 0),
                            }
                            for task_id, status in self.active_tasks.items()
                        },
                    }
                ),
                200,
            )

    def reduce_results(self):
        """Merge the posted partial indexes into one inverted index"""
        data = request.get_json(silent=True)
        if not data or "partial_indexes" not in data:
            self.logger.error(f"Missing parameters in reduce request. Got: {data}")
            return jsonify({"error": MESSAGES["MISSING_PARAMS"]}), 400

        partials = data["partial_indexes"]
        if not isinstance(partials, list):
            return jsonify({"error": MESSAGES["PARTIALS_NOT_LIST"]}), 400

        task_id = data.get("task_id") or f"reduce_{datetime.now().strftime('%Y%m%d%H%M%S%f')}"
        self.update_task_status(task_id, TASK_STATES["IN_PROGRESS"])
        try:
            inverted_index = self.processor.process_partial_indexes(partials)
        except Exception as e:
            self.logger.error(f"Error processing reduce task {task_id}: {e}", exc_info=True)
            self.update_task_status(task_id, TASK_STATES["FAILED"])
            return jsonify({"status": STATUS["ERROR"], "task_id": task_id, "error": str(e)}), 500

        self.update_task_status(task_id, TASK_STATES["COMPLETED"], len(inverted_index))
        self.logger.info(f"Reduce task {task_id} completed with {len(inverted_index)} terms")
        return (
            jsonify(
                {
                    "status": STATUS["SUCCESS"],
                    "task_id": task_id,
                    "index": inverted_index,
                    "num_terms": len(inverted_index),
                }
            ),
            200,
        )

    def update_task_status(self, task_id: str, state: str, num_terms: int = 0):
        """Update status of a task"""
        with self.task_lock:
            self.active_tasks.pop(task_id, None)
            self.active_tasks[task_id] = {
                "state": state,
                "num_terms": num_terms,
                "last_updated": datetime.now().isoformat(),
            }
            self._evict_finished_tasks()

    def _evict_finished_tasks(self):
        """Drop the oldest finished tasks past the cap. Caller holds task_lock."""
        excess = len(self.active_tasks) - self.max_tracked_tasks
        if excess <= 0:
            return
        finished = [
            task_id for task_id, status in self.active_tasks.items()
            if status["state"] != TASK_STATES["IN_PROGRESS"]
        ]
        for task_id in finished[:excess]:
            del self.active_tasks[task_id]

    def run(self, host: str = REDUCER_HOST, port: int = REDUCER_PORT):
        """Run the reducer server"""
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
    reducer_server = ReducerServer()
    reducer_server.run()
