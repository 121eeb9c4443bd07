"""State space of AMMs and the bounded cache of state changes used to unwind reorgs."""

from __future__ import annotations

import copy
import enum
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Protocol

from .errors import (
    CapacityError,
    LogBlockNumberNotFound,
    NoStateChangesInCache,
    PopFrontError,
)

STATE_CHANGE_CACHE_CAPACITY = 150


class AMMKind(enum.Enum):
    """The kinds of automated market maker tracked in a state space."""

    UNISWAP_V2 = "UniswapV2Pool"
    UNISWAP_V3 = "UniswapV3Pool"
    ERC4626_VAULT = "ERC4626Vault"


@dataclass(frozen=True)
class Log:
    """An event log emitted by a contract."""

    address: str
    block_number: int | None = None
    topics: tuple[bytes, ...] = ()
    data: bytes = b""


class _AMM(Protocol):
    address: str
    kind: AMMKind

    def sync_from_log(self, log: Log) -> None: ...


StateSpace = dict[str, Any]


@dataclass
class StateChange:
    """The AMM states that preceded the changes made in one block."""

    state_change: list[Any] | None
    block_number: int


@dataclass
class StateChangeCache:
    """A bounded deque of state changes, newest at the front."""

    capacity: int = STATE_CHANGE_CACHE_CAPACITY
    _items: deque[StateChange] = field(default_factory=deque, init=False, repr=False)

    def push_front(self, state_change: StateChange) -> None:
        """Add a state change as the newest entry; raise CapacityError when full."""
        if self.is_full():
            raise CapacityError()
        self._items.appendleft(state_change)

    def pop_front(self) -> StateChange:
        """Remove and return the newest entry; raise IndexError when empty."""
        if not self._items:
            raise IndexError("pop from an empty state change cache")
        return self._items.popleft()

    def pop_back(self) -> StateChange:
        """Remove and return the oldest entry; raise IndexError when empty."""
        if not self._items:
            raise IndexError("pop from an empty state change cache")
        return self._items.pop()

    def front(self) -> StateChange | None:
        """Return the newest entry without removing it, or None when empty."""
        return self._items[0] if self._items else None

    def is_full(self) -> bool:
        return len(self._items) >= self.capacity

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[StateChange]:
        return iter(self._items)


def initialize_state_space(amms: Iterable[_AMM]) -> StateSpace:
    """Map each AMM by its address; later AMMs replace earlier ones at the same address."""
    return {amm.address: amm for amm in amms}


def unwind_state_changes(
    state: StateSpace,
    state_change_cache: StateChangeCache,
    block_to_unwind: int,
) -> None:
    """Restore AMM states recorded at or after ``block_to_unwind``, newest first.

    Raises NoStateChangesInCache if the cache runs out before reaching an
    entry older than ``block_to_unwind``: the state can then not be rolled back
    accurately.
    """
    while True:
        latest = state_change_cache.front()
        if latest is None:
            raise NoStateChangesInCache()
        if latest.block_number < block_to_unwind:
            return
        try:
            popped = state_change_cache.pop_front()
        except IndexError as exc:
            raise PopFrontError() from exc
        if popped.state_change is not None:
            for amm in popped.state_change:
                state[amm.address] = amm


def add_state_change_to_cache(
    state_change_cache: StateChangeCache, state_change: StateChange
) -> None:
    """Push a state change, dropping the oldest entry when the cache is full."""
    if state_change_cache.is_full():
        state_change_cache.pop_back()
    state_change_cache.push_front(state_change)


def get_block_number_from_log(log: Log) -> int:
    """Return the log's block number; raise LogBlockNumberNotFound if it has none."""
    if log.block_number is None:
        raise LogBlockNumberNotFound()
    return log.block_number


def handle_state_changes_from_logs(
    state: StateSpace,
    state_change_cache: StateChangeCache,
    logs: Iterable[Log],
) -> list[str]:
    """Apply logs to the AMMs they concern and record prior states per block.

    Returns the addresses of the AMMs that were updated, in first-seen order.
    """
    logs = list(logs)
    updated_amms: list[str] = []
    if not logs:
        return updated_amms

    seen: set[str] = set()
    state_changes: list[Any] = []
    last_log_block_number = get_block_number_from_log(logs[0])

    for log in logs:
        log_block_number = get_block_number_from_log(log)

        amm = state.get(log.address)
        if amm is not None:
            if log.address not in seen:
                seen.add(log.address)
                updated_amms.append(log.address)
            state_changes.append(copy.deepcopy(amm))
            amm.sync_from_log(log)

        if log_block_number != last_log_block_number:
            add_state_change_to_cache(
                state_change_cache,
                StateChange(state_changes or None, last_log_block_number),
            )
            state_changes = []
            last_log_block_number = log_block_number

    add_state_change_to_cache(
        state_change_cache,
        StateChange(state_changes or None, last_log_block_number),
    )
    return updated_amms