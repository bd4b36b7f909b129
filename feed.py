# feed.py
"""In-process push feed of newly created chat messages, keyed by match id."""
import queue
import threading
from typing import Dict, Iterator, List, Optional

from models import Message

_CLOSED = object()


class Subscription:
    def __init__(self, feed: "MessageFeed", match_id: str):
        self.feed = feed
        self.match_id = match_id
        self._queue: "queue.Queue" = queue.Queue()
        self.cancelled = False

    def _deliver(self, message: Message) -> None:
        self._queue.put(message)

    def get(self, timeout: Optional[float] = None) -> Optional[Message]:
        """Next message, or None on timeout or after cancel()."""
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _CLOSED:
            self._queue.put(_CLOSED)
            return None
        return item

    def __iter__(self) -> Iterator[Message]:
        while True:
            item = self._queue.get()
            if item is _CLOSED:
                self._queue.put(_CLOSED)
                return
            yield item

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        self.feed._remove(self)
        self._queue.put(_CLOSED)


class MessageFeed:
    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: Dict[str, List[Subscription]] = {}

    def subscribe(self, match_id: str) -> Subscription:
        sub = Subscription(self, match_id)
        with self._lock:
            self._subscribers.setdefault(match_id, []).append(sub)
        return sub

    def publish(self, message: Message) -> int:
        """Deliver to every live subscriber of the message's match. Returns how many got it."""
        with self._lock:
            targets = list(self._subscribers.get(message.match_id, []))
        for sub in targets:
            sub._deliver(message)
        return len(targets)

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subscribers.get(sub.match_id, [])
            if sub in subs:
                subs.remove(sub)
            if not subs:
                self._subscribers.pop(sub.match_id, None)
