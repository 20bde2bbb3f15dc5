"""Concurrent per-file estimation for selection lists."""

from __future__ import annotations

import logging
import queue
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

from .core import MemoryEstimator
from .models import EstimateRow, EstimateState, GroupedFile, MemoryEstimate
from .quantization import detect_quantization

POLL_INTERVAL = 0.2  # seconds

# (generation, row index, estimate or None)
_Update = Tuple[int, int, Optional[MemoryEstimate]]


class EstimateBoard:
    """Runs one estimate per grouped file and collects results by row index.

    Worker threads never touch the rows. Each finished estimate is posted to a
    queue and applied by poll() on the consumer's thread, so the rows have a
    single writer. cancel() abandons the current round: queued work is
    cancelled, in-flight readers are aborted, and late results are discarded.
    """

    def __init__(self,
                 estimator: MemoryEstimator,
                 files: Sequence[GroupedFile],
                 repo_id: Optional[str] = None,
                 base_path: Optional[Union[str, Path]] = None,
                 context_length: Optional[int] = None,
                 max_workers: int = 4):
        self.estimator = estimator
        self.repo_id = repo_id
        self.base_path = base_path
        self.context_length = context_length
        self.rows: List[EstimateRow] = [
            EstimateRow(file=f, quantization=detect_quantization(f.actual_name)) for f in files
        ]
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="estimate")
        self._updates: "queue.Queue[_Update]" = queue.Queue()
        self._futures: Dict[int, Future] = {}
        self._abort_event = threading.Event()
        self._generation = 0
        logging.debug(f"EstimateBoard initialized: {len(self.rows)} rows, max_workers={max_workers}")

    def start(self) -> None:
        """Submit an estimate for every row that does not have one yet."""
        for index, row in enumerate(self.rows):
            if row.state is EstimateState.READY or index in self._futures:
                continue
            row.state = EstimateState.PENDING
            self._futures[index] = self._executor.submit(
                self._run, self._generation, index, row.file, self._abort_event
            )

    def _run(self, generation: int, index: int, grouped: GroupedFile,
             abort_event: threading.Event) -> None:
        estimate: Optional[MemoryEstimate] = None
        try:
            if not abort_event.is_set():
                estimate = self.estimator.estimate_file(
                    grouped,
                    repo_id=self.repo_id,
                    base_path=self.base_path,
                    context_length=self.context_length,
                    abort_event=abort_event,
                )
        except Exception as e:
            # The estimator already maps I/O errors to None; anything else is a bug
            logging.exception(f"EstimateBoard: estimate for {grouped.display_name} crashed: {e}")
        self._updates.put((generation, index, estimate))

    def poll(self) -> List[int]:
        """Apply finished estimates and return the indices of rows that changed."""
        changed: List[int] = []
        while True:
            try:
                generation, index, estimate = self._updates.get_nowait()
            except queue.Empty:
                break
            if generation != self._generation:
                logging.debug(f"EstimateBoard.poll: dropping stale result for row {index}")
                continue
            self._futures.pop(index, None)
            row = self.rows[index]
            row.estimate = estimate
            row.state = EstimateState.READY if estimate is not None else EstimateState.UNAVAILABLE
            changed.append(index)
        return changed

    @property
    def pending(self) -> int:
        return sum(1 for row in self.rows if row.state is EstimateState.PENDING)

    def wait(self, timeout: Optional[float] = None, poll_interval: float = POLL_INTERVAL) -> bool:
        """Poll until every row has settled.

        Returns:
            True if all rows settled, False if the timeout elapsed first
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            self.poll()
            if self.pending == 0:
                return True
            if deadline is not None and time.monotonic() >= deadline:
                logging.debug(f"EstimateBoard.wait: timeout with {self.pending} rows pending")
                return False
            time.sleep(poll_interval)

    def cancel(self) -> None:
        """Abandon every queued and in-flight estimate of the current round."""
        logging.debug(f"EstimateBoard.cancel: generation {self._generation}")
        self._abort_event.set()
        for future in self._futures.values():
            future.cancel()
        self._futures.clear()
        self._generation += 1
        self._abort_event = threading.Event()
        for row in self.rows:
            if row.state is EstimateState.PENDING:
                row.state = EstimateState.UNAVAILABLE

    def restart(self, context_length: Optional[int] = None) -> None:
        """Cancel the current round and recompute every row, e.g. for a new context length."""
        self.cancel()
        if context_length is not None:
            self.context_length = context_length
        for row in self.rows:
            row.state = EstimateState.PENDING
            row.estimate = None
        self.start()

    def shutdown(self, wait: bool = True) -> None:
        """Cancel outstanding work and stop the worker threads."""
        self.cancel()
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> EstimateBoard:
        self.start()
        return self

    def __exit__(self, exc_type: type | None, exc_value: Exception | None, traceback: object | None) -> None:
        self.shutdown(wait=False)
