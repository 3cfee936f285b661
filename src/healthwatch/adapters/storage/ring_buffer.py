"""Ring buffer storage adapter for metric samples.

Provides bounded in-memory storage that automatically evicts oldest
samples when the buffer is full. Useful for production services that
need predictable memory usage.
"""

from collections import deque

from healthwatch.adapters.storage.in_memory import InMemoryMetricRepository
from healthwatch.core.models import MetricSample


class RingBufferMetricRepository(InMemoryMetricRepository):
    """Ring buffer implementation of MetricRepositoryPort.

    Samples live in a fixed-size circular buffer; when it is full the
    oldest appended sample is evicted. Metric types are never evicted.

    Args:
        max_size: Maximum number of samples to store.
    """

    def __init__(self, max_size: int) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        super().__init__()
        self._samples: deque[MetricSample] = deque(maxlen=max_size)  # type: ignore[assignment]

    async def delete_before(self, timestamp: float) -> int:
        before = len(self._samples)
        kept = [s for s in self._samples if s.timestamp >= timestamp]
        self._samples.clear()
        self._samples.extend(kept)
        return before - len(self._samples)

    @property
    def max_size(self) -> int | None:
        return self._samples.maxlen
