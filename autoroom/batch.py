"""Adaptive micro-batching between two queues.

``batch_up`` groups whatever the producer has already queued into one
batch, so batch sizes follow producer speed rather than a fixed count or
timer. A batch is never held back waiting for more items once the input
queue has gone idle.
"""

from __future__ import annotations

import queue
from typing import Any, List

# Put on the values queue by the producer once it has no more items.
CLOSED: Any = object()


def batch_up(values: "queue.Queue[Any]", batches: "queue.Queue[List[Any]]") -> None:
    """Move items from ``values`` to ``batches`` as order-preserving lists.

    Drains every item available without blocking into the current batch.
    When ``values`` is momentarily empty a non-empty batch is sent at once;
    an empty batch instead waits on a blocking ``get`` for its first item.

    Returns once ``CLOSED`` is received, after sending any pending batch.
    ``batches`` is only ever given non-empty lists and is not closed here;
    signalling the end of batches to a consumer is left to the caller.
    """
    while True:
        batch: List[Any] = []
        while True:
            try:
                v = values.get_nowait()
            except queue.Empty:
                if batch:
                    break
                v = values.get()
            if v is CLOSED:
                if batch:
                    batches.put(batch)
                return
            batch.append(v)
        batches.put(batch)
