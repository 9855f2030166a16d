"""
Channel - Ordered asynchronous stream of values with a completion signal.

A Channel is bound to a Scheduler. Producers append items and eventually close
the channel; every subscriber receives every item, in emission order, followed
by exactly one close notification. Deliveries run on the scheduler's routing
thread, so operator state never needs its own locking.
"""

import itertools
import logging
import threading
from typing import TYPE_CHECKING, Any, Callable, Iterable, List, Optional, Sequence

from . import operators
from .error_handling import Failure

if TYPE_CHECKING:
    from .scheduler import Scheduler
    from .task import TaskNode

logger = logging.getLogger(__name__)

_CLOSE = object()


class _Subscription:
    __slots__ = ("on_item", "on_close", "cursor", "done")

    def __init__(self, on_item: Callable[[Any], None], on_close: Callable[[], None]):
        self.on_item = on_item
        self.on_close = on_close
        self.cursor = 0
        self.done = False


class Channel:
    """A lazily consumed, lineage-ordered stream of elements.

    Attributes
    ----------
    scheduler : Scheduler
        Scheduler whose routing thread delivers this channel's items
    name : str
        Name used in logs and plans
    upstream : List[Channel]
        Channels this channel was derived from
    producer : str or None
        Name of the task node producing this channel, if any
    """

    _ids = itertools.count(1)

    def __init__(
        self,
        scheduler: "Scheduler",
        name: Optional[str] = None,
        upstream: Sequence["Channel"] = (),
        producer: Optional[str] = None,
    ):
        self.scheduler = scheduler
        self.name = name or f"channel-{next(self._ids)}"
        self.upstream: List[Channel] = list(upstream)
        self.producer = producer
        self._items: List[Any] = []
        self._closed = False
        self._subscriptions: List[_Subscription] = []
        self._lock = threading.Lock()
        scheduler.register_channel(self)

    # --- Producer side ---

    def emit(self, item: Any) -> None:
        """Append an item and notify subscribers."""
        with self._lock:
            if self._closed:
                raise RuntimeError(f"Cannot emit into closed channel '{self.name}'")
            self._items.append(item)
            subscriptions = list(self._subscriptions)
        for sub in subscriptions:
            self.scheduler.post(self._pump, sub)

    def close(self) -> None:
        """Mark the channel complete. Closing twice is a no-op."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            subscriptions = list(self._subscriptions)
        logger.debug(f"Channel '{self.name}' closed with {len(self._items)} items")
        for sub in subscriptions:
            self.scheduler.post(self._pump, sub)

    # --- Consumer side ---

    def subscribe(self, on_item: Callable[[Any], None], on_close: Callable[[], None]) -> None:
        """Register callbacks; items already emitted are replayed first."""
        sub = _Subscription(on_item, on_close)
        with self._lock:
            self._subscriptions.append(sub)
        self.scheduler.post(self._pump, sub)

    def _pump(self, sub: _Subscription) -> None:
        while True:
            with self._lock:
                if sub.cursor < len(self._items):
                    item = self._items[sub.cursor]
                    sub.cursor += 1
                elif self._closed and not sub.done:
                    sub.done = True
                    item = _CLOSE
                else:
                    return
            if item is _CLOSE:
                sub.on_close()
                return
            sub.on_item(item)

    @property
    def closed(self) -> bool:
        """Whether the channel has received its completion signal."""
        with self._lock:
            return self._closed

    def snapshot(self) -> List[Any]:
        """Items emitted so far, in emission order."""
        with self._lock:
            return list(self._items)

    def derive(self, name: str, upstream: Sequence["Channel"] = (), producer: Optional[str] = None):
        """Create a new channel on the same scheduler whose lineage includes this one."""
        return Channel(self.scheduler, name, [self, *upstream], producer)

    def values(self) -> List[Any]:
        """Run the scheduler until quiescent and return this channel's items.

        Raises
        ------
        BaseException
            The error of the first failure token in the channel
        """
        self.scheduler.run()
        items = self.snapshot()
        for item in items:
            if isinstance(item, Failure):
                raise item.error
        return items

    # --- Operators ---

    def map(self, fn: Callable[[Any], Any], name: Optional[str] = None) -> "Channel":
        """Apply ``fn`` to each element, preserving order."""
        return operators.map_items(self, fn, name)

    def filter(self, predicate: Callable[[Any], bool], name: Optional[str] = None) -> "Channel":
        """Keep elements for which ``predicate`` is true."""
        return operators.filter_items(self, predicate, name)

    def combine(self, other: "Channel", name: Optional[str] = None) -> "Channel":
        """Pair each element with every element of ``other`` once ``other`` completes."""
        return operators.combine(self, other, name)

    def join(
        self,
        other: "Channel",
        key: Callable[[Any], Any],
        other_key: Optional[Callable[[Any], Any]] = None,
        name: Optional[str] = None,
    ) -> "Channel":
        """Pair elements 1:1 by key; unmatched keys become JoinMismatchError failures."""
        return operators.join(self, other, key, other_key or key, name)

    def collect(self, name: Optional[str] = None) -> "Channel":
        """Barrier: emit one list of all elements after upstream completes."""
        return operators.collect(self, name)

    def flatten(self, name: Optional[str] = None) -> "Channel":
        """Fan each list element out into its members, in order."""
        return operators.flatten(self, name)

    def group_by(
        self,
        key: Callable[[Any], Any],
        failure_key: Optional[Callable[[Any], Any]] = None,
        name: Optional[str] = None,
    ) -> "Channel":
        """Per-key barrier: emit ``(key, [elements])`` per key after upstream completes."""
        return operators.group_by(self, key, failure_key, name)

    def split_lines(self, by: int = 1, name: Optional[str] = None) -> "Channel":
        """Fan a text file out into its lines (or chunks of ``by`` lines)."""
        return operators.split_lines(self, by, name)

    def split_csv(
        self,
        sep: str = "\t",
        header: bool = False,
        columns: Optional[Sequence[str]] = None,
        name: Optional[str] = None,
    ) -> "Channel":
        """Fan a delimited file out into row dictionaries."""
        return operators.split_csv(self, sep, header, columns, name)

    def process(self, node: "TaskNode") -> "Channel":
        """Run ``node`` once per element; the result channel carries task outputs."""
        return self.scheduler.process(self, node)

    def __repr__(self) -> str:
        """Return string representation of the channel."""
        return f"Channel(name='{self.name}', items={len(self._items)}, closed={self._closed})"


def channel_of(scheduler: "Scheduler", items: Iterable[Any], name: Optional[str] = None) -> Channel:
    """Create a closed source channel holding ``items``."""
    channel = Channel(scheduler, name)
    for item in items:
        channel.emit(item)
    channel.close()
    return channel
