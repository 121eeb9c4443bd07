"""Keeps a state space of AMMs in step with new blocks, unwinding changes on reorgs."""

from __future__ import annotations

import asyncio
import dataclasses
from collections import deque
from dataclasses import dataclass
from typing import Any, AsyncIterable, Awaitable, Callable, Generic, Iterable, Protocol, TypeVar

from .cache import (
    Log,
    StateChange,
    StateChangeCache,
    StateSpace,
    add_state_change_to_cache,
    handle_state_changes_from_logs,
    initialize_state_space,
    unwind_state_changes,
)
from .errors import BlockNumberNotFound, StateSpaceError

_T = TypeVar("_T")


@dataclass(frozen=True)
class Block:
    """A block header announced by the chain."""

    number: int | None = None
    hash: str | None = None


@dataclass(frozen=True)
class Filter:
    """A log filter: event signatures matched against topic 0 and a block range."""

    topics: tuple[Any, ...] = ()
    from_block: int | None = None
    to_block: int | None = None

    def with_range(self, from_block: int, to_block: int) -> Filter:
        """Return a copy of this filter restricted to the given inclusive range."""
        return dataclasses.replace(self, from_block=from_block, to_block=to_block)


class Middleware(Protocol):
    async def get_logs(self, log_filter: Filter) -> list[Log]: ...


class StreamMiddleware(Protocol):
    async def subscribe_blocks(self) -> AsyncIterable[Block]: ...


class _Channel(Generic[_T]):
    """A bounded channel; once closed, sends fail and receivers drain what is left."""

    def __init__(self, capacity: int, closed_message: str) -> None:
        self._capacity = max(1, capacity)
        self._closed_message = closed_message
        self._items: deque[_T] = deque()
        self._closed = False
        self._cond = asyncio.Condition()

    async def send(self, item: _T) -> None:
        async with self._cond:
            await self._cond.wait_for(
                lambda: self._closed or len(self._items) < self._capacity
            )
            if self._closed:
                raise StateSpaceError(self._closed_message)
            self._items.append(item)
            self._cond.notify_all()

    async def recv(self) -> _T | None:
        """Return the next item, or None once the channel is closed and empty."""
        async with self._cond:
            await self._cond.wait_for(lambda: bool(self._items) or self._closed)
            if self._items:
                item = self._items.popleft()
                self._cond.notify_all()
                return item
            return None

    async def close(self) -> None:
        async with self._cond:
            self._closed = True
            self._cond.notify_all()

    def __aiter__(self) -> _Channel[_T]:
        return self

    async def __anext__(self) -> _T:
        item = await self.recv()
        if item is None:
            raise StopAsyncIteration
        return item


_BLOCK_SEND_ERROR = "Could not send block through channel"
_STATE_CHANGE_SEND_ERROR = "Could not send state changes through channel"

_Notify = Callable[[Block, "list[str] | None"], Awaitable[None]]


class StateSpaceManager:
    """Owns a state space of AMMs and the cache of changes used to unwind reorgs."""

    def __init__(
        self,
        amms: Iterable[Any],
        middleware: Middleware,
        stream_middleware: StreamMiddleware,
    ) -> None:
        self.state: StateSpace = initialize_state_space(amms)
        self.state_change_cache = StateChangeCache()
        self.middleware = middleware
        self.stream_middleware = stream_middleware

    def get_block_filter(self) -> Filter:
        """Build a filter on the sync event signatures of every AMM kind present."""
        signatures: list[Any] = []
        seen_kinds: set[Any] = set()
        for amm in self.state.values():
            if amm.kind not in seen_kinds:
                seen_kinds.add(amm.kind)
                signatures.extend(amm.sync_on_event_signatures())
        return Filter(topics=tuple(signatures))

    async def listen_for_new_blocks(
        self, last_synced_block: int, channel_buffer: int
    ) -> tuple[_Channel[Block], list[asyncio.Task[None]]]:
        """Apply each new block's logs and pass every processed block to the receiver."""
        new_blocks: _Channel[Block] = _Channel(channel_buffer, _BLOCK_SEND_ERROR)

        async def notify(block: Block, _updated: list[str] | None) -> None:
            await new_blocks.send(block)

        tasks = self._start(last_synced_block, channel_buffer, notify, new_blocks)
        return new_blocks, tasks

    async def listen_for_state_changes(
        self, last_synced_block: int, channel_buffer: int
    ) -> tuple[_Channel[list[str]], list[asyncio.Task[None]]]:
        """Apply each new block's logs and pass the addresses of updated AMMs to the receiver."""
        updates: _Channel[list[str]] = _Channel(channel_buffer, _STATE_CHANGE_SEND_ERROR)

        async def notify(_block: Block, updated: list[str] | None) -> None:
            if updated is not None:
                await updates.send(updated)

        tasks = self._start(last_synced_block, channel_buffer, notify, updates)
        return updates, tasks

    async def listen_for_updates(
        self, last_synced_block: int, channel_buffer: int
    ) -> list[asyncio.Task[None]]:
        """Apply each new block's logs without sending any notification."""

        async def notify(_block: Block, _updated: list[str] | None) -> None:
            return None

        return self._start(last_synced_block, channel_buffer, notify, None)

    def _start(
        self,
        last_synced_block: int,
        channel_buffer: int,
        notify: _Notify,
        output: _Channel[Any] | None,
    ) -> list[asyncio.Task[None]]:
        log_filter = self.get_block_filter()
        blocks: _Channel[Block] = _Channel(channel_buffer, _BLOCK_SEND_ERROR)
        stream_task = asyncio.create_task(self._stream_blocks(blocks))
        process_task = asyncio.create_task(
            self._process_blocks(blocks, last_synced_block, log_filter, notify, output)
        )
        return [stream_task, process_task]

    async def _stream_blocks(self, blocks: _Channel[Block]) -> None:
        try:
            try:
                stream = await self.stream_middleware.subscribe_blocks()
            except Exception as exc:
                raise StateSpaceError("Pubsub client error") from exc
            async for block in stream:
                await blocks.send(block)
        finally:
            await blocks.close()

    async def _process_blocks(
        self,
        blocks: _Channel[Block],
        last_synced_block: int,
        log_filter: Filter,
        notify: _Notify,
        output: _Channel[Any] | None,
    ) -> None:
        try:
            async for block in blocks:
                head = block.number
                if head is None:
                    raise BlockNumberNotFound()

                if head <= last_synced_block:
                    unwind_state_changes(self.state, self.state_change_cache, head)
                    last_synced_block = head - 1

                from_block = last_synced_block + 1
                try:
                    logs = await self.middleware.get_logs(
                        log_filter.with_range(from_block, head)
                    )
                except StateSpaceError:
                    raise
                except Exception as exc:
                    raise StateSpaceError("Middleware error") from exc

                updated: list[str] | None
                if not logs:
                    for block_number in range(from_block, head + 1):
                        add_state_change_to_cache(
                            self.state_change_cache, StateChange(None, block_number)
                        )
                    updated = None
                else:
                    updated = handle_state_changes_from_logs(
                        self.state, self.state_change_cache, logs
                    )

                last_synced_block = head
                await notify(block, updated)
        finally:
            await blocks.close()
            if output is not None:
                await output.close()