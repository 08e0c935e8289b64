import logging
import time
from typing import Callable, Iterable, List

from index_updater.models.search_backend import BackendError, SearchBackend

logger = logging.getLogger(__name__)

OPTIMIZED_SEGMENTS = 5
SHARD_POLL_SECONDS = 1
SHARD_POLL_LOG_EVERY = 20
STARTED = "STARTED"


class AliasSwap:
    """
    Moves aliases onto a new index. Every alias change is a single _aliases request, so the alias is never
    observed with zero holders.
    """

    def __init__(self, backend: SearchBackend, sleep: Callable[[float], None] = time.sleep) -> None:
        self.backend = backend
        self.sleep = sleep

    def swap(self, alias: str, new_index: str, holders: Iterable[str]) -> List[str]:
        """Point alias at new_index and take it away from every other holder. Returns the superseded indexes."""
        superseded = [holder for holder in holders if holder != new_index]
        logger.info(f"Swapping {alias} onto {new_index}, removing it from {superseded}")
        self.backend.swap_alias(alias, new_index, superseded)
        return superseded

    def bind_global(self, alias: str, index: str, stale_holders: Iterable[str]) -> List[str]:
        removed = [holder for holder in stale_holders if holder != index]
        logger.info(f"Adding global alias {alias} to {index}, removing it from {removed}")
        self.backend.swap_alias(alias, index, removed)
        return removed

    def remove_superseded(self, indexes: Iterable[str]) -> List[str]:
        """Delete the old indexes. Returns the ones that could not be deleted; the aliases stay where they are."""
        failed = []
        for index in indexes:
            try:
                self.backend.delete_index(index)
            except BackendError as e:
                logger.error(f"Unable to remove superseded index {index}, remove it by hand: {e}")
                failed.append(index)
        return failed

    def optimize(self, index: str, max_num_segments: int = OPTIMIZED_SEGMENTS) -> None:
        logger.info(f"Optimizing {index} down to {max_num_segments} segments")
        self.backend.force_merge(index, max_num_segments)

    def restore_replicas(self, index: str, replicas: int) -> None:
        logger.info(f"Setting {index} to {replicas} replica(s)")
        self.backend.set_replica_count(index, replicas)

    def wait_for_shards_started(self, index: str) -> int:
        """Poll until every shard copy of the index reports STARTED. Returns the number of polls that waited."""
        # TODO: bound this loop and report the index as degraded instead of waiting forever.
        polls = 0
        while True:
            states = self.backend.shard_states(index)
            pending = [state for state in states if state != STARTED]
            if states and not pending:
                logger.info(f"All {len(states)} shard copies of {index} started")
                return polls
            polls += 1
            if polls % SHARD_POLL_LOG_EVERY == 0:
                logger.info(f"Waiting on {len(pending)} shard copies of {index} to start")
            self.sleep(SHARD_POLL_SECONDS)

    def finish(self, index: str, replicas: int) -> None:
        """Bring an index that was bulk loaded without replicas up to its configured replica count."""
        self.optimize(index)
        self.restore_replicas(index, replicas)
        self.wait_for_shards_started(index)
