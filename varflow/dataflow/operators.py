"""
Channel operators.

Each operator subscribes to one or two upstream channels and returns a new
channel. Operator callbacks run on the scheduler's routing thread, one at a
time, so the buffering state kept here is never touched concurrently.

Failure tokens are forwarded, never dropped. Join and combine pair a failure
with its counterparts so that exactly the dependents of a failed element see
the failure.
"""

import logging
from collections import OrderedDict
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence

import pandas as pd

from .error_handling import Failure, JoinMismatchError

if TYPE_CHECKING:
    from .channel import Channel

logger = logging.getLogger(__name__)


def lineage_key(item: Any) -> Any:
    """Return the typed key an element carries, or None.

    Records expose their identity through a ``key`` attribute; tuples built by
    ``combine``, ``join`` and ``group_by`` take the key of their first element,
    or the element itself when it is a plain string or integer.
    """
    if isinstance(item, Failure):
        return item.key
    key = getattr(item, "key", None)
    if key is not None:
        return key
    if isinstance(item, tuple) and item:
        first = item[0]
        if isinstance(first, (str, int)):
            return first
        return lineage_key(first)
    return None


def _pair(left: Any, right: Any) -> tuple:
    if isinstance(left, tuple):
        return (*left, right)
    return (left, right)


def map_items(source: "Channel", fn: Callable[[Any], Any], name: Optional[str] = None):
    """Apply ``fn`` to each element; an exception becomes that element's failure."""
    out = source.derive(name or f"{source.name}.map")

    def on_item(item):
        if isinstance(item, Failure):
            out.emit(item)
            return
        try:
            result = fn(item)
        except Exception as e:
            logger.error(f"map on '{source.name}' failed for {lineage_key(item)!r}: {e}")
            out.emit(Failure(e, lineage_key(item)))
            return
        out.emit(result)

    source.subscribe(on_item, out.close)
    return out


def filter_items(source: "Channel", predicate: Callable[[Any], bool], name: Optional[str] = None):
    """Keep elements for which ``predicate`` holds. Failures always pass."""
    out = source.derive(name or f"{source.name}.filter")

    def on_item(item):
        if isinstance(item, Failure):
            out.emit(item)
            return
        try:
            keep = predicate(item)
        except Exception as e:
            out.emit(Failure(e, lineage_key(item)))
            return
        if keep:
            out.emit(item)

    source.subscribe(on_item, out.close)
    return out


class _Combine:
    """Broadcast pairing of a left stream against the full content of ``right``."""

    def __init__(self, left: "Channel", right: "Channel", out: "Channel"):
        self.right = right
        self.out = out
        self.pending: List[Any] = []
        self.right_items: Optional[List[Any]] = None
        self.left_done = False
        left.subscribe(self.on_left, self.on_left_close)
        right.subscribe(lambda item: None, self.on_right_close)

    def on_left(self, item):
        if self.right_items is None:
            self.pending.append(item)
        else:
            self._emit_pairs(item)

    def on_right_close(self):
        self.right_items = self.right.snapshot()
        pending, self.pending = self.pending, []
        for item in pending:
            self._emit_pairs(item)
        self._maybe_close()

    def on_left_close(self):
        self.left_done = True
        self._maybe_close()

    def _maybe_close(self):
        if self.left_done and self.right_items is not None:
            self.out.close()

    def _emit_pairs(self, item):
        if isinstance(item, Failure):
            # one token per would-be pair; at least one so it is not lost
            for _ in self.right_items or [None]:
                self.out.emit(item)
            return
        for other in self.right_items:
            if isinstance(other, Failure):
                self.out.emit(Failure(other.error, lineage_key(item)))
            else:
                self.out.emit(_pair(item, other))


def combine(left: "Channel", right: "Channel", name: Optional[str] = None):
    """Cartesian pairing: every left element with every element of ``right``.

    Left elements wait until ``right`` completes; once it has, new left
    elements are paired immediately.
    """
    out = left.derive(name or f"{left.name}.combine({right.name})", upstream=[right])
    _Combine(left, right, out)
    return out


class _Join:
    """1:1 keyed pairing of two streams."""

    def __init__(
        self,
        left: "Channel",
        right: "Channel",
        left_key: Callable[[Any], Any],
        right_key: Callable[[Any], Any],
        out: "Channel",
    ):
        self.out = out
        self.keys = {"left": left_key, "right": right_key}
        self.waiting: Dict[str, "OrderedDict[Any, Any]"] = {
            "left": OrderedDict(),
            "right": OrderedDict(),
        }
        self.seen: Dict[str, set] = {"left": set(), "right": set()}
        self.open_sides = {"left", "right"}
        left.subscribe(lambda item: self.on_item("left", item), lambda: self.on_close("left"))
        right.subscribe(lambda item: self.on_item("right", item), lambda: self.on_close("right"))

    def on_item(self, side: str, item: Any) -> None:
        other_side = "right" if side == "left" else "left"

        if isinstance(item, Failure):
            key = item.key
            if key is None:
                self.out.emit(item)
                return
        else:
            try:
                key = self.keys[side](item)
            except Exception as e:
                self.out.emit(Failure(e, lineage_key(item)))
                return

        if key in self.seen[side]:
            error = JoinMismatchError(key, side, reason="duplicate")
            logger.error(str(error))
            self.out.emit(Failure(error, key))
            return
        self.seen[side].add(key)

        if key not in self.waiting[other_side]:
            if other_side not in self.open_sides:
                # the other side is complete, so this key can never be matched
                self._unmatched(side, key, item)
                return
            self.waiting[side][key] = item
            return

        other = self.waiting[other_side].pop(key)
        left, right = (item, other) if side == "left" else (other, item)
        if isinstance(left, Failure):
            self.out.emit(left)
        elif isinstance(right, Failure):
            self.out.emit(Failure(right.error, key))
        else:
            self.out.emit(_pair(left, right))

    def on_close(self, side: str) -> None:
        self.open_sides.discard(side)
        # elements of the other side still waiting for this side are unmatched now
        self._fail_waiting("right" if side == "left" else "left")
        if not self.open_sides:
            self._fail_waiting(side)
            self.out.close()

    def _fail_waiting(self, side: str) -> None:
        waiting, self.waiting[side] = self.waiting[side], OrderedDict()
        for key, item in waiting.items():
            self._unmatched(side, key, item)

    def _unmatched(self, side: str, key: Any, item: Any) -> None:
        if isinstance(item, Failure):
            self.out.emit(item)
            return
        error = JoinMismatchError(key, side)
        logger.error(str(error))
        self.out.emit(Failure(error, key))


def join(
    left: "Channel",
    right: "Channel",
    left_key: Callable[[Any], Any],
    right_key: Callable[[Any], Any],
    name: Optional[str] = None,
):
    """Pair elements of two channels whose keys match.

    An element waits until its key appears on the other side. Once one side
    is complete, elements of the other side whose key it never carried become
    JoinMismatchError failures right away, without waiting for the other side
    to complete.
    """
    out = left.derive(name or f"{left.name}.join({right.name})", upstream=[right])
    _Join(left, right, left_key, right_key, out)
    return out


def collect(source: "Channel", name: Optional[str] = None):
    """Buffer every element and emit one list after upstream completes.

    If any buffered element is a failure, the aggregate is that failure.
    """
    out = source.derive(name or f"{source.name}.collect")
    buffer: List[Any] = []

    def on_close():
        failures = [item for item in buffer if isinstance(item, Failure)]
        if failures:
            logger.warning(
                f"collect on '{source.name}': {len(failures)} of {len(buffer)} elements failed"
            )
            out.emit(Failure(failures[0].error))
        else:
            logger.debug(f"collect on '{source.name}' releasing {len(buffer)} elements")
            out.emit(list(buffer))
        out.close()

    source.subscribe(buffer.append, on_close)
    return out


def group_by(
    source: "Channel",
    key: Callable[[Any], Any],
    failure_key: Optional[Callable[[Any], Any]] = None,
    name: Optional[str] = None,
):
    """Buffer elements per key and emit ``(key, [elements])`` after upstream completes.

    Groups are emitted in first-seen key order. A failure token is placed in the
    group ``failure_key(failure.key)`` (identity by default); a group holding a
    failure is emitted as that failure, keyed by the group key.
    """
    out = source.derive(name or f"{source.name}.group_by")
    groups: "OrderedDict[Any, List[Any]]" = OrderedDict()

    def on_item(item):
        if isinstance(item, Failure):
            group_key = failure_key(item.key) if failure_key else item.key
        else:
            try:
                group_key = key(item)
            except Exception as e:
                out.emit(Failure(e, lineage_key(item)))
                return
        groups.setdefault(group_key, []).append(item)

    def on_close():
        for group_key, items in groups.items():
            failed = next((item for item in items if isinstance(item, Failure)), None)
            if failed is not None:
                out.emit(Failure(failed.error, group_key))
            else:
                out.emit((group_key, items))
        out.close()

    source.subscribe(on_item, on_close)
    return out


def flatten(source: "Channel", name: Optional[str] = None):
    """Emit the members of each list or tuple element; other elements pass unchanged."""
    out = source.derive(name or f"{source.name}.flatten")

    def on_item(item):
        if isinstance(item, (list, tuple)):
            for member in item:
                out.emit(member)
        else:
            out.emit(item)

    source.subscribe(on_item, out.close)
    return out


def split_lines(source: "Channel", by: int = 1, name: Optional[str] = None):
    """Emit the non-blank lines of each text file element, in file order.

    With ``by`` > 1, lines are emitted in lists of up to ``by`` lines.
    """
    if by < 1:
        raise ValueError(f"split_lines chunk size must be positive, got {by}")
    out = source.derive(name or f"{source.name}.split_lines")

    def on_item(item):
        if isinstance(item, Failure):
            out.emit(item)
            return
        try:
            with open(Path(item), "r", encoding="utf-8") as fh:
                lines = [line.rstrip("\r\n") for line in fh if line.strip()]
        except OSError as e:
            logger.error(f"split_lines could not read {item}: {e}")
            out.emit(Failure(e, lineage_key(item)))
            return
        if by == 1:
            for line in lines:
                out.emit(line)
        else:
            for i in range(0, len(lines), by):
                out.emit(lines[i : i + by])

    source.subscribe(on_item, out.close)
    return out


def split_csv(
    source: "Channel",
    sep: str = "\t",
    header: bool = False,
    columns: Optional[Sequence[str]] = None,
    name: Optional[str] = None,
):
    """Emit each row of every delimited file element as a dict, in file order.

    Values are kept as strings. Without a header row, ``columns`` names the
    fields; if neither is given, fields are keyed by position.
    """
    out = source.derive(name or f"{source.name}.split_csv")

    def on_item(item):
        if isinstance(item, Failure):
            out.emit(item)
            return
        try:
            df = pd.read_csv(
                item,
                sep=sep,
                header=0 if header else None,
                names=list(columns) if columns else None,
                dtype=str,
                keep_default_na=False,
                comment="#",
                skip_blank_lines=True,
            )
        except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
            logger.error(f"split_csv could not parse {item}: {e}")
            out.emit(Failure(e, lineage_key(item)))
            return
        for row in df.to_dict(orient="records"):
            out.emit(row)

    source.subscribe(on_item, out.close)
    return out
