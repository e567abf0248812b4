"""Fixel-fixel connectivity from tractography.

Streamlines flow through a three-stage pipeline connected by bounded
queues:

1. a single producer reads streamlines in file order,
2. mapper threads turn each streamline into (voxel, tangent) samples,
3. processor threads assign samples to fixels and accumulate the pairwise
   visitation counts and the per-fixel track density.

Counts are plain sums, so the result does not depend on thread scheduling.
Each row of the count table is only modified while holding that fixel's
lock; there is no global lock.
"""

import logging
import math
import queue
import threading
from typing import Dict, Iterable, List, Optional

import numpy as np
from scipy import sparse

from fixelcfe.connectivity.mapping import Sample, TrackMapper
from fixelcfe.fixels.index import FixelIndex
from fixelcfe.utils.exceptions import ConnectivityError
from fixelcfe.utils.logging import ProgressCounter, log_warning_box

logger = logging.getLogger(__name__)

# Below this many streamlines the connectivity estimate is considered noisy
MIN_ROBUST_TRACK_COUNT = 1_000_000

_SENTINEL = object()


class RawConnectivity:
    """Pairwise streamline counts and per-fixel density under construction.

    Pair counts are recorded in one orientation only, ``counts[a][b]`` with
    ``a < b``. Call :meth:`symmetrise` once all writers are done.

    Args:
        n_fixels: Number of fixels in the index.
    """

    def __init__(self, n_fixels: int):
        self.n_fixels = n_fixels
        self.counts: List[Dict[int, int]] = [dict() for _ in range(n_fixels)]
        self.density = np.zeros(n_fixels, dtype=np.int64)
        self._locks = [threading.Lock() for _ in range(n_fixels)]

    def record(self, fixel_ids: np.ndarray) -> None:
        """Accumulate the visits of one streamline.

        Args:
            fixel_ids: Ordered fixel ids visited by the streamline, one per
                accepted sample. Duplicates are counted.
        """
        fixel_ids = np.asarray(fixel_ids, dtype=np.int64)
        if len(fixel_ids) == 0:
            return
        assert fixel_ids.min() >= 0 and fixel_ids.max() < self.n_fixels, \
            "fixel id out of range"

        visited, visits = np.unique(fixel_ids, return_counts=True)
        for fixel, n_visits in zip(visited.tolist(), visits.tolist()):
            with self._locks[fixel]:
                self.density[fixel] += n_visits

        if len(fixel_ids) < 2:
            return

        first, second = np.triu_indices(len(fixel_ids), k=1)
        a, b = fixel_ids[first], fixel_ids[second]
        distinct = a != b
        low = np.minimum(a, b)[distinct]
        high = np.maximum(a, b)[distinct]
        if len(low) == 0:
            return

        keys, pair_counts = np.unique(low * self.n_fixels + high, return_counts=True)
        rows = keys // self.n_fixels
        columns = keys % self.n_fixels

        # keys are sorted, hence grouped by row: take each row lock once
        boundaries = np.flatnonzero(np.diff(rows)) + 1
        for chunk in np.split(np.arange(len(keys)), boundaries):
            row = int(rows[chunk[0]])
            with self._locks[row]:
                row_counts = self.counts[row]
                for column, count in zip(columns[chunk].tolist(), pair_counts[chunk].tolist()):
                    row_counts[column] = row_counts.get(column, 0) + count

    def symmetrise(self) -> sparse.csr_matrix:
        """Return the symmetric count matrix.

        Every recorded ``a -> b`` count is mirrored to ``b -> a``. Must only
        be called after all writers have finished.
        """
        rows, columns, values = [], [], []
        for row, row_counts in enumerate(self.counts):
            if not row_counts:
                continue
            rows.append(np.full(len(row_counts), row, dtype=np.int64))
            columns.append(np.fromiter(row_counts.keys(), dtype=np.int64, count=len(row_counts)))
            values.append(np.fromiter(row_counts.values(), dtype=np.float64, count=len(row_counts)))

        shape = (self.n_fixels, self.n_fixels)
        if not rows:
            return sparse.csr_matrix(shape, dtype=np.float64)

        rows = np.concatenate(rows)
        columns = np.concatenate(columns)
        values = np.concatenate(values)
        assert np.all(rows < columns), "pair counts must be stored with row < column"

        upper = sparse.coo_matrix((values, (rows, columns)), shape=shape).tocsr()
        symmetric = (upper + upper.T).tocsr()
        symmetric.sort_indices()
        return symmetric


class TrackProcessor:
    """Assign the samples of one streamline to fixels and record them.

    Many threads may share one processor; all shared state lives in the
    :class:`RawConnectivity` and is guarded by its per-fixel locks.

    Args:
        fixel_index: The fixels of interest.
        connectivity: Accumulator for counts and density.
        angular_threshold: Maximum angle (degrees) between a streamline
            tangent and a fixel direction.
    """

    def __init__(
        self,
        fixel_index: FixelIndex,
        connectivity: RawConnectivity,
        angular_threshold: float,
    ):
        self.fixel_index = fixel_index
        self.connectivity = connectivity
        self.angular_threshold_dp = math.cos(math.radians(angular_threshold))

    def assign(self, samples: List[Sample]) -> np.ndarray:
        """Return the fixel id of each sample that matches a fixel."""
        directions = self.fixel_index.directions
        fixel_ids = []
        for voxel, tangent in samples:
            start, count = self.fixel_index.voxel_range(voxel)
            if count == 0:
                continue
            dot_products = np.abs(directions[start:start + count] @ tangent)
            closest = int(np.argmax(dot_products))
            if dot_products[closest] > self.angular_threshold_dp:
                fixel_ids.append(start + closest)
        return np.asarray(fixel_ids, dtype=np.int64)

    def __call__(self, samples: List[Sample]) -> None:
        self.connectivity.record(self.assign(samples))


class TrackPipeline:
    """Producer / mapper / processor pipeline over bounded queues.

    A full queue blocks its writers and an empty queue blocks its readers.
    If any stage raises, the other stages stop doing work, drain their input
    until the end-of-stream marker, and the first error is re-raised once
    every thread has joined.

    Args:
        n_threads: Number of mapper threads and of processor threads.
        queue_size: Capacity of each queue.
        log_interval: Number of streamlines between progress messages.
    """

    def __init__(self, n_threads: int = 4, queue_size: int = 1024, log_interval: int = 100_000):
        self.n_threads = max(1, int(n_threads))
        self.queue_size = max(1, int(queue_size))
        self.log_interval = log_interval
        self._errors: List[BaseException] = []
        self._errors_lock = threading.Lock()
        self._failed = threading.Event()

    def run(self, source: Iterable, mapper, processor, total: Optional[int] = None) -> int:
        """Push every item of ``source`` through ``mapper`` then ``processor``.

        Args:
            source: Iterable of items, read by a single thread.
            mapper: Callable applied by the mapper threads.
            processor: Callable applied by the processor threads.
            total: Expected number of items, for progress messages only.

        Returns:
            Number of items read from ``source``.
        """
        self._errors = []
        self._failed.clear()
        self._read = ProgressCounter(logger, "Read streamlines", self.log_interval, total)
        self._processed = ProgressCounter(
            logger, "Processed streamlines", self.log_interval, total
        )

        track_queue = queue.Queue(maxsize=self.queue_size)
        sample_queue = queue.Queue(maxsize=self.queue_size)

        producer = threading.Thread(
            target=self._produce, args=(source, track_queue),
            name="fixelcfe-producer", daemon=True,
        )
        mappers = [
            threading.Thread(
                target=self._consume, args=(mapper, track_queue, sample_queue),
                name=f"fixelcfe-mapper-{i}", daemon=True,
            )
            for i in range(self.n_threads)
        ]
        processors = [
            threading.Thread(
                target=self._consume, args=(processor, sample_queue, None),
                name=f"fixelcfe-processor-{i}", daemon=True,
            )
            for i in range(self.n_threads)
        ]

        for thread in [producer, *mappers, *processors]:
            thread.start()

        producer.join()
        for _ in mappers:
            track_queue.put(_SENTINEL)
        for thread in mappers:
            thread.join()
        for _ in processors:
            sample_queue.put(_SENTINEL)
        for thread in processors:
            thread.join()

        if self._errors:
            raise self._errors[0]

        return self._read.count

    def _record_error(self, error: BaseException) -> None:
        with self._errors_lock:
            self._errors.append(error)
        self._failed.set()

    def _produce(self, source: Iterable, output_queue: queue.Queue) -> None:
        try:
            for item in source:
                if self._failed.is_set():
                    break
                output_queue.put(item)
                self._read.increment()
        except Exception as error:
            self._record_error(error)

    def _consume(self, function, input_queue: queue.Queue, output_queue) -> None:
        while True:
            item = input_queue.get()
            if item is _SENTINEL:
                break
            if self._failed.is_set():
                continue
            try:
                result = function(item)
                if output_queue is not None:
                    output_queue.put(result)
                else:
                    self._processed.increment()
            except Exception as error:
                self._record_error(error)


def build_connectivity(
    fixel_index: FixelIndex,
    streamlines: Iterable,
    n_tracks: int,
    angular_threshold: float = 30.0,
    n_threads: int = 4,
    queue_size: int = 1024,
    upsample_ratio: float = 3.0,
) -> RawConnectivity:
    """Accumulate fixel-fixel streamline counts and fixel track density.

    Args:
        fixel_index: The fixels of interest.
        streamlines: Iterable of (n_points, 3) arrays in scanner space (mm).
        n_tracks: Number of streamlines declared by the track file, 0 when
            the header does not state it.
        angular_threshold: Maximum angle (degrees) between a streamline
            tangent and a fixel direction.
        n_threads: Threads per parallel stage.
        queue_size: Capacity of the pipeline queues.
        upsample_ratio: Streamline resampling ratio (see TrackMapper).

    Returns:
        Raw (one-orientation) counts and per-fixel density.

    Raises:
        ConnectivityError: If there are no streamlines.
    """
    mapper = TrackMapper(fixel_index.affine, fixel_index.shape, upsample_ratio=upsample_ratio)
    connectivity = RawConnectivity(len(fixel_index))
    processor = TrackProcessor(fixel_index, connectivity, angular_threshold)

    pipeline = TrackPipeline(n_threads=n_threads, queue_size=queue_size)
    n_read = pipeline.run(streamlines, mapper, processor, total=n_tracks or None)

    if n_read == 0:
        raise ConnectivityError("No tracks found in input file")
    if n_read < MIN_ROBUST_TRACK_COUNT:
        log_warning_box(logger, "Fewer than 1 million tracks: connectivity may be noisy")
        logger.warning(
            f"Only {n_read} tracks provided; more than {MIN_ROBUST_TRACK_COUNT} "
            f"should be used to ensure robust fixel-fixel connectivity"
        )
    if n_tracks and n_read != n_tracks:
        logger.warning(f"Track file declares {n_tracks} tracks but {n_read} were read")

    logger.info(
        f"Processed {n_read} tracks: "
        f"{int(np.count_nonzero(connectivity.density))}/{len(fixel_index)} fixels visited"
    )
    return connectivity
