from flask import Flask, jsonify, request
import logging
import sys
from typing import Optional

from .config import PipelineConfig
from .constants import (
    LOG_FORMAT,
    LOG_LEVEL,
    MASTER_HOST,
    MASTER_PORT,
    MESSAGES,
    STATUS,
)
from .coordinator import JobNotFound, MapReduceCoordinator
from .job_state import InvalidTransition, JobInputError
from .sink import SinkError

logger = logging.getLogger(__name__)


def setup_logging():
    """Configure logging for the application"""
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def initialize_coordinator(config: Optional[PipelineConfig] = None) -> MapReduceCoordinator:
    """Initialize the coordinator from the environment"""
    try:
        logger.info("Initializing MapReduceCoordinator...")
        coordinator = MapReduceCoordinator.from_config(config or PipelineConfig.from_env())
        logger.info("MapReduce Coordinator system initialized successfully")
        return coordinator
    except Exception as e:
        logger.error(f"Failed to initialize MapReduce system: {e}", exc_info=True)
        raise


class MasterServer:
    def __init__(self, coordinator: Optional[MapReduceCoordinator] = None):
        self.app = Flask(__name__)
        self.coordinator = coordinator or initialize_coordinator()
        self.logger = logging.getLogger(__name__)
        self.setup_routes()

    def setup_routes(self):
        """Initialize all routes for the master server"""
        self.app.route("/ping", methods=["GET"])(self.handle_ping)
        self.app.route("/jobs", methods=["POST"])(self.submit_job)
        self.app.route("/jobs", methods=["GET"])(self.list_jobs)
        self.app.route("/jobs/<job_id>", methods=["GET"])(self.job_status)
        self.app.route("/jobs/<job_id>/cancel", methods=["POST"])(self.cancel_job)
        self.app.route("/jobs/<job_id>/sink", methods=["POST"])(self.retry_sink)

    def handle_ping(self):
        return jsonify({"status": "alive"}), 200

    def submit_job(self):
        """Accept a document list and start an indexing job"""
        payload = request.get_json(silent=True)
        try:
            job = self.coordinator.submit(payload)
        except JobInputError as e:
            self.logger.error(f"Rejected job submission: {e}")
            return jsonify({"status": STATUS["ERROR"], "message": str(e)}), 400

        self.logger.info(f"Started inverted index job with ID = '{job.job_id}'")
        return (
            jsonify(
                {
                    "status": STATUS["SUCCESS"],
                    "job_id": job.job_id,
                    "state": job.state,
                    "status_url": f"/jobs/{job.job_id}",
                }
            ),
            202,
        )

    def list_jobs(self):
        return jsonify(self.coordinator.get_job_status()), 200

    def job_status(self, job_id: str):
        try:
            job = self.coordinator.get_job(job_id)
        except JobNotFound:
            return jsonify({"status": STATUS["ERROR"], "message": MESSAGES["JOB_NOT_FOUND"]}), 404
        return jsonify(job.to_status()), 200

    def cancel_job(self, job_id: str):
        try:
            job = self.coordinator.cancel(job_id)
        except JobNotFound:
            return jsonify({"status": STATUS["ERROR"], "message": MESSAGES["JOB_NOT_FOUND"]}), 404
        except InvalidTransition as e:
            return jsonify({"status": STATUS["ERROR"], "message": str(e)}), 409
        return jsonify(job.to_status(include_index=False)), 200

    def retry_sink(self, job_id: str):
        """Save the index of a finished job again"""
        try:
            job = self.coordinator.retry_sink(job_id)
        except JobNotFound:
            return jsonify({"status": STATUS["ERROR"], "message": MESSAGES["JOB_NOT_FOUND"]}), 404
        except InvalidTransition as e:
            return jsonify({"status": STATUS["ERROR"], "message": str(e)}), 409
        except SinkError as e:
            self.logger.error(f"Retrying sink for job {job_id} failed: {e}")
            return jsonify({"status": STATUS["ERROR"], "message": str(e)}), 500
        return jsonify(job.to_status(include_index=False)), 200

    def run(self, host: str = MASTER_HOST, port: int = MASTER_PORT):
        """Run the master server"""
        self.app.run(host=host, port=port, threaded=True)


if __name__ == "__main__":
    setup_logging()
    master_server = MasterServer()
    master_server.run()
