"""
Copies every document from a source (usually the type alias) into a destination index.

The copy is split across N workers. Each worker owns the documents whose id hashes to its slot:
    (java_string_hash(id) & 0x7FFFFFFF) % N == worker
so the partitions are disjoint and together cover the whole source. The same function runs on the backend as a
painless script filter, and each worker checks the ids it gets back against it.

Documents are written with create semantics. A destination that already holds an id means two workers saw the
same document, or a previous run left data behind; either way the copy fails rather than overwrite.
"""
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

from index_updater.models.search_backend import SCROLL_WINDOW, SearchBackend

logger = logging.getLogger(__name__)

INT_MAX = 0x7FFFFFFF
PARTITION_SCRIPT = "(doc['_id'].value.hashCode() & Integer.MAX_VALUE) % params.workers == params.worker"

BULK_SETTINGS = {
    "index.refresh_interval": "-1",
    "index.merge.policy.segments_per_tier": 20,
}
RESTORED_SETTINGS = {
    "index.refresh_interval": "1s",
    "index.merge.policy.segments_per_tier": 10,
}


class CountDeviationExceeded(Exception):
    def __init__(self, source: str, destination: str, old_count: int, new_count: int, deviation: float,
                 tolerance: float):
        self.old_count = old_count
        self.new_count = new_count
        self.deviation = deviation
        self.tolerance = tolerance
        super().__init__(f"Reindex of {source} into {destination} is too far off: {old_count} documents before, "
                         f"{new_count} after, a deviation of {deviation:.2%} over the accepted {tolerance:.2%}")


class PartitionViolation(Exception):
    def __init__(self, partition: "Partition", doc_id: str):
        self.partition = partition
        self.doc_id = doc_id
        super().__init__(f"Worker {partition.worker} of {partition.workers} received document {doc_id}, "
                         f"which belongs to worker {partition_of(doc_id, partition.workers)}")


def java_string_hash(value: str) -> int:
    """String.hashCode() as the backend's JVM computes it, over UTF-16 code units, as an unsigned 32 bit int."""
    h = 0
    encoded = value.encode("utf-16-be")
    for i in range(0, len(encoded), 2):
        h = (31 * h + int.from_bytes(encoded[i:i + 2], "big")) & 0xFFFFFFFF
    return h


def partition_of(doc_id: str, workers: int) -> int:
    return (java_string_hash(doc_id) & INT_MAX) % workers


@dataclass(frozen=True)
class Partition:
    worker: int
    workers: int

    def owns(self, doc_id: str) -> bool:
        return partition_of(doc_id, self.workers) == self.worker

    def query(self) -> Dict:
        return {
            "bool": {
                "filter": {
                    "script": {
                        "script": {
                            "source": PARTITION_SCRIPT,
                            "lang": "painless",
                            "params": {"worker": self.worker, "workers": self.workers},
                        }
                    }
                }
            }
        }

    def check(self, hits: List[Tuple[str, Dict]]) -> None:
        for doc_id, _ in hits:
            if not self.owns(doc_id):
                raise PartitionViolation(self, doc_id)


def count_deviation(old_count: int, new_count: int) -> float:
    if old_count == 0:
        return 0.0
    return abs(old_count - new_count) / old_count


@dataclass
class WorkerProgress:
    seen: int = 0
    written: int = 0
    total: int = 0
    started: float = 0.0
    elapsed: float = 0.0

    def record(self, seen: int, written: int, now: float) -> None:
        self.seen += seen
        self.written += written
        self.elapsed = now - self.started

    @property
    def rate(self) -> float:
        if self.elapsed <= 0:
            return 0.0
        return self.written / self.elapsed


@dataclass
class ReindexJob:
    source: str
    destination: str
    chunk_size: int
    partition: Optional[Partition] = None
    scroll_id: Optional[str] = None
    progress: WorkerProgress = field(default_factory=WorkerProgress)

    def query(self) -> Dict:
        if self.partition is None:
            return {"match_all": {}}
        return self.partition.query()

    @property
    def label(self) -> str:
        if self.partition is None:
            return self.destination
        return f"{self.destination} [{self.partition.worker + 1}/{self.partition.workers}]"


@dataclass(frozen=True)
class ReindexResult:
    source: str
    destination: str
    written: int
    old_count: int
    new_count: int
    deviation: float


class Reindexer:
    def __init__(self, backend: SearchBackend, chunk_size: int, workers: int, acceptable_count_deviation: float,
                 scroll_window: str = SCROLL_WINDOW, clock: Callable[[], float] = time.monotonic) -> None:
        self.backend = backend
        self.chunk_size = chunk_size
        self.workers = workers
        self.acceptable_count_deviation = acceptable_count_deviation
        self.scroll_window = scroll_window
        self.clock = clock

    def jobs(self, source: str, destination: str) -> List[ReindexJob]:
        if self.workers <= 1:
            return [ReindexJob(source, destination, self.chunk_size)]
        return [ReindexJob(source, destination, self.chunk_size, Partition(worker, self.workers))
                for worker in range(self.workers)]

    def reindex(self, source: str, destination: str) -> ReindexResult:
        """Copy, then verify. Raises CountDeviationExceeded if the copy came up too short (or long)."""
        logger.info(f"Reindexing {source} into {destination} with {self.workers} worker(s)")
        self.backend.set_settings(destination, BULK_SETTINGS)
        try:
            written = self.copy(source, destination)
        finally:
            self.backend.set_settings(destination, RESTORED_SETTINGS)
        return self.verify(source, destination, written)

    def copy(self, source: str, destination: str) -> int:
        jobs = self.jobs(source, destination)
        abort = threading.Event()
        if len(jobs) == 1:
            return self._copy_partition(self.backend, jobs[0], abort).written

        first_error: Optional[Exception] = None
        written = 0
        with ThreadPoolExecutor(max_workers=len(jobs), thread_name_prefix="reindex") as executor:
            futures = [executor.submit(self._run_worker, job, abort) for job in jobs]
            for future in as_completed(futures):
                try:
                    written += future.result().written
                except Exception as e:
                    if first_error is None:
                        first_error = e
        if first_error is not None:
            raise first_error
        return written

    def _run_worker(self, job: ReindexJob, abort: threading.Event) -> WorkerProgress:
        try:
            return self._copy_partition(self.backend.for_worker(), job, abort)
        except Exception as e:
            logger.error(f"Reindex worker for {job.label} failed, stopping the others: {type(e).__name__} {e}")
            abort.set()
            raise

    def _copy_partition(self, backend: SearchBackend, job: ReindexJob, abort: threading.Event) -> WorkerProgress:
        progress = job.progress
        progress.started = self.clock()
        page = backend.open_scroll(job.source, job.query(), size=job.chunk_size, window=self.scroll_window)
        job.scroll_id = page.scroll_id
        progress.total = page.total
        try:
            while page.hits:
                if abort.is_set():
                    logger.warning(f"Reindex worker for {job.label} stopping early, another worker failed")
                    break
                if job.partition is not None:
                    job.partition.check(page.hits)
                written = backend.bulk_create(job.destination, page.hits)
                progress.record(len(page.hits), written, self.clock())
                logger.info(f"{job.label}: Reindexed {progress.seen}/{progress.total} documents at "
                            f"{progress.rate:.1f}/second")
                page = backend.fetch_next(job.scroll_id, window=self.scroll_window)
                job.scroll_id = page.scroll_id or job.scroll_id
        finally:
            if job.scroll_id:
                backend.clear_scroll(job.scroll_id)
        return progress

    def verify(self, source: str, destination: str, written: int) -> ReindexResult:
        self.backend.refresh(destination)
        old_count = self.backend.count(source)
        new_count = self.backend.count(destination)
        deviation = count_deviation(old_count, new_count)
        logger.info(f"Verified {destination}: {old_count} documents in {source}, {new_count} copied, "
                    f"deviation {deviation:.2%}")
        if deviation > self.acceptable_count_deviation:
            raise CountDeviationExceeded(source, destination, old_count, new_count, deviation,
                                         self.acceptable_count_deviation)
        return ReindexResult(source=source, destination=destination, written=written, old_count=old_count,
                             new_count=new_count, deviation=deviation)
