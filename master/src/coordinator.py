import logging
import threading
import uuid
from concurrent.futures import ALL_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, List, Optional, Sequence

from mapper.src.models import DocumentContent, PartialIndex
from mapper.src.processor import MapperProcessor, TokenizationError
from reducer.src.processor import ReducerProcessor

from .config import PipelineConfig
from .constants import DEFAULT_MAX_WORKERS, JOB_STATES, MAX_RETAINED_JOBS, MESSAGES
from .fetcher import FetchError, HttpFetcher
from .job_state import InvalidTransition, JobState, parse_documents
from .sink import JsonFileSink, SinkError
from .workers import HttpMapWorker, HttpReduceWorker, WorkerError

InvertedIndex = Dict[str, List[Dict]]
MapWorker = Callable[[DocumentContent], PartialIndex]
ReduceWorker = Callable[[Sequence[PartialIndex]], InvertedIndex]


class JobNotFound(KeyError):
    pass


class MapReduceCoordinator:
    """
    Runs jobs through fetching -> mapping -> reducing -> done.

    Fetching and mapping fan out one task per document on a thread pool and
    wait for all of them before moving on; reducing is a single call on the
    coordinating thread.
    """

    def __init__(
        self,
        fetcher,
        map_worker: MapWorker,
        reduce_worker: ReduceWorker,
        sink: Optional[JsonFileSink] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        strict_fetch: bool = False,
        max_retained_jobs: int = MAX_RETAINED_JOBS,
    ):
        self.logger = logging.getLogger(__name__)
        self.fetcher = fetcher
        self.map_worker = map_worker
        self.reduce_worker = reduce_worker
        self.sink = sink
        self.max_workers = max_workers
        self.strict_fetch = strict_fetch
        self.max_retained_jobs = max_retained_jobs
        self.jobs: Dict[str, JobState] = {}
        self.jobs_lock = threading.Lock()
        self.job_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="job")
        self.logger.info("MapReduceCoordinator initialized")

    @classmethod
    def from_config(cls, config: PipelineConfig) -> "MapReduceCoordinator":
        if config.mapper_urls:
            map_worker = HttpMapWorker(
                config.mapper_urls,
                bucket_size=config.bucket_size,
                stop_words=config.stop_words,
            )
        else:
            map_worker = MapperProcessor(config.bucket_size, config.stop_words).map_document
        if config.reducer_url:
            reduce_worker = HttpReduceWorker(config.reducer_url)
        else:
            reduce_worker = ReducerProcessor().process_partial_indexes
        return cls(
            fetcher=HttpFetcher(timeout=config.fetch_timeout),
            map_worker=map_worker,
            reduce_worker=reduce_worker,
            sink=JsonFileSink(config.output_dir),
            max_workers=config.max_workers,
            strict_fetch=config.strict_fetch,
        )

    def create_job(self, payload) -> JobState:
        """Validate the document list and register a job. Raises JobInputError."""
        documents = parse_documents(payload)
        job = JobState(job_id=uuid.uuid4().hex, documents=documents)
        with self.jobs_lock:
            self._evict_finished_jobs()
            self.jobs[job.job_id] = job
        self.logger.info(f"Registered new job {job.job_id} with {len(documents)} documents")
        return job

    def _evict_finished_jobs(self):
        """Drop the oldest finished jobs once the registry is full. Caller holds jobs_lock."""
        excess = len(self.jobs) - self.max_retained_jobs + 1
        if excess <= 0:
            return
        # jobs whose index still awaits a sink retry are kept
        finished = [
            job_id for job_id, job in self.jobs.items()
            if job.is_terminal and job.sink_error is None
        ]
        for job_id in finished[:excess]:
            del self.jobs[job_id]
            self.logger.info(f"Evicted finished job {job_id}")

    def submit(self, payload) -> JobState:
        """Register a job and run it in the background"""
        job = self.create_job(payload)
        self.job_executor.submit(self._run_in_background, job)
        return job

    def _run_in_background(self, job: JobState):
        try:
            self.run_job(job)
        except SinkError as e:
            self.logger.error(f"Job {job.job_id} finished but its index was not saved: {e}")
        except Exception as e:
            self.logger.error(f"Job {job.job_id} failed: {e}", exc_info=True)

    def run_job(self, job: JobState) -> Optional[InvertedIndex]:
        """
        Drive a job to a terminal state and return its index.
        Returns None when the job was cancelled or failed on strict fetch.
        Raises SinkError after the job is done if the index could not be saved.
        """
        try:
            with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="task") as pool:
                if self._stop_if_cancelled(job):
                    return None
                contents = self._fetch_all(job, pool)
                if self._stop_if_cancelled(job):
                    return None
                if self.strict_fetch and job.failed_documents:
                    job.fail(f"Could not fetch: {', '.join(job.failed_documents)}")
                    return None

                job.transition(JOB_STATES["MAPPING"])
                partials = self._map_all(job, pool, contents)
                if self._stop_if_cancelled(job):
                    return None

            job.transition(JOB_STATES["REDUCING"])
            self.logger.info(f"Job {job.job_id}: reducing {len(partials)} partial indexes")
            job.index = self.reduce_worker(partials)
            job.transition(JOB_STATES["DONE"])
        except Exception as e:
            if not job.is_terminal:
                job.fail(str(e))
            raise

        self.logger.info(f"Job {job.job_id} done with {len(job.index)} terms")
        self._write_sink(job)
        return job.index

    def _fetch_all(self, job: JobState, pool: ThreadPoolExecutor) -> List[DocumentContent]:
        self.logger.info(f"Job {job.job_id}: fetching {len(job.documents)} documents")
        futures = [pool.submit(self.fetcher.fetch, ref.location) for ref in job.documents]
        self._barrier(futures)

        contents = []
        for ref, future in zip(job.documents, futures):
            try:
                contents.append(DocumentContent(name=ref.name, text=future.result()))
            except FetchError as e:
                self.logger.error(f"Couldn't fetch document {ref.name}: {e}")
                job.failed_documents.append(ref.name)
                contents.append(DocumentContent(name=ref.name, text=""))
        return contents

    def _map_all(
        self, job: JobState, pool: ThreadPoolExecutor, contents: List[DocumentContent]
    ) -> List[PartialIndex]:
        self.logger.info(f"Job {job.job_id}: mapping {len(contents)} documents")
        futures = [pool.submit(self.map_worker, content) for content in contents]
        self._barrier(futures)

        partials = []
        for content, future in zip(contents, futures):
            try:
                partials.append(future.result())
            except (TokenizationError, WorkerError) as e:
                self.logger.error(f"Couldn't map document {content.name}: {e}")
                if content.name not in job.failed_documents:
                    job.failed_documents.append(content.name)
                partials.append({})
        return partials

    @staticmethod
    def _barrier(futures: List[Future]):
        """Block until every future has finished, whatever its outcome"""
        wait(futures, return_when=ALL_COMPLETED)

    def _stop_if_cancelled(self, job: JobState) -> bool:
        if job.cancel_requested:
            self.logger.warning(f"Job {job.job_id} cancelled while {job.state}")
            job.fail(MESSAGES["JOB_CANCELLED"])
            return True
        return False

    def _write_sink(self, job: JobState):
        if self.sink is None:
            return
        try:
            job.result_location = self.sink.write(job.job_id, job.index)
            job.sink_error = None
        except SinkError as e:
            job.sink_error = str(e)
            raise

    def retry_sink(self, job_id: str) -> JobState:
        """Persist the index of a finished job again, without recomputing it"""
        job = self.get_job(job_id)
        if job.state != JOB_STATES["DONE"]:
            raise InvalidTransition(MESSAGES["JOB_NOT_DONE"])
        self._write_sink(job)
        return job

    def cancel(self, job_id: str) -> JobState:
        job = self.get_job(job_id)
        if job.is_terminal:
            raise InvalidTransition(MESSAGES["JOB_FINISHED"])
        job.cancel_requested = True
        self.logger.info(f"Cancellation requested for job {job_id}")
        return job

    def get_job(self, job_id: str) -> JobState:
        with self.jobs_lock:
            job = self.jobs.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    def get_job_status(self) -> Dict:
        """Get status of all jobs"""
        with self.jobs_lock:
            jobs = list(self.jobs.values())
        return {job.job_id: job.to_status(include_index=False) for job in jobs}

    def shutdown(self, wait_for_jobs: bool = True):
        self.job_executor.shutdown(wait=wait_for_jobs)
