from __future__ import annotations
from queue import Queue, Full, Empty
from typing import Any, List, Optional

def safe_put(q: Queue, item: Any) -> bool:
    """
    Put without blocking; if the queue is full, drop the oldest item and retry.
    Returns False when something had to be dropped. Never blocks the producer.
    """
    try:
        q.put_nowait(item)
        return True
    except Full:
        pass
    try:
        q.get_nowait()  # drop oldest
    except Empty:
        pass
    try:
        q.put_nowait(item)
    except Full:
        # lost a race with another producer; the newest item loses
        pass
    return False

def drain(q: Queue, limit: Optional[int] = None) -> List[Any]:
    out: List[Any] = []
    while limit is None or len(out) < limit:
        try:
            out.append(q.get_nowait())
        except Empty:
            break
    return out
