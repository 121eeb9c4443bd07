import asyncio
from dataclasses import dataclass

import pytest

from ammstate.cache import (
    AMMKind,
    Log,
    StateChange,
    StateChangeCache,
    add_state_change_to_cache,
    unwind_state_changes,
)
from ammstate.errors import BlockNumberNotFound, NoStateChangesInCache, StateSpaceError
from ammstate.manager import Block, Filter, StateSpaceManager

ZERO = "0x" + "00" * 20
POOL_A = "0x" + "aa" * 20
POOL_B = "0x" + "bb" * 20
POOL_C = "0x" + "cc" * 20

SIGNATURES = {
    AMMKind.UNISWAP_V2: ["sync_v2"],
    AMMKind.UNISWAP_V3: ["swap_v3", "mint_v3", "burn_v3"],
}


@dataclass
class FakePool:
    address: str
    kind: AMMKind = AMMKind.UNISWAP_V2
    reserve_0: int = 0

    def sync_on_event_signatures(self):
        return list(SIGNATURES[self.kind])

    def sync_from_log(self, log):
        self.reserve_0 = int.from_bytes(log.data, "big")


class FakeMiddleware:
    def __init__(self, responses=(), error=None):
        self.responses = list(responses)
        self.error = error
        self.filters = []

    async def get_logs(self, log_filter):
        self.filters.append(log_filter)
        if self.error is not None:
            raise self.error
        return self.responses.pop(0) if self.responses else []


class FakeStream:
    def __init__(self, blocks):
        self.blocks = list(blocks)

    async def subscribe_blocks(self):
        async def generate():
            for block in self.blocks:
                yield block

        return generate()


def log_at(address, block_number, value):
    return Log(address=address, block_number=block_number, data=value.to_bytes(32, "big"))


def test_manager_maps_amms_by_address():
    pools = [FakePool(POOL_A), FakePool(POOL_B)]
    manager = StateSpaceManager(pools, FakeMiddleware(), FakeStream([]))
    assert manager.state == {POOL_A: pools[0], POOL_B: pools[1]}
    assert len(manager.state_change_cache) == 0


def test_block_filter_takes_signatures_once_per_kind():
    pools = [
        FakePool(POOL_A),
        FakePool(POOL_B),
        FakePool(POOL_C, kind=AMMKind.UNISWAP_V3),
    ]
    manager = StateSpaceManager(pools, FakeMiddleware(), FakeStream([]))
    assert manager.get_block_filter().topics == ("sync_v2", "swap_v3", "mint_v3", "burn_v3")


def test_filter_with_range_leaves_original_unchanged():
    base = Filter(topics=("sync_v2",))
    ranged = base.with_range(5, 9)
    assert (ranged.from_block, ranged.to_block, ranged.topics) == (5, 9, ("sync_v2",))
    assert (base.from_block, base.to_block) == (None, None)


@pytest.mark.asyncio
async def test_unwind_state_changes_through_manager_state():
    manager = StateSpaceManager([FakePool(ZERO)], FakeMiddleware(), FakeStream([]))
    cache = StateChangeCache()
    for i in range(100):
        add_state_change_to_cache(cache, StateChange([FakePool(ZERO, reserve_0=i)], i))

    unwind_state_changes(manager.state, cache, 50)

    assert manager.state[ZERO].reserve_0 == 50
    assert len(cache) == 50
    assert cache.front().block_number == 49


@pytest.mark.asyncio
async def test_listen_for_new_blocks_applies_logs_and_forwards_blocks():
    pool = FakePool(POOL_A)
    middleware = FakeMiddleware([[], [log_at(POOL_A, 12, 7)]])
    blocks = [Block(number=11, hash="h11"), Block(number=12, hash="h12")]
    manager = StateSpaceManager([pool], middleware, FakeStream(blocks))

    receiver, tasks = await manager.listen_for_new_blocks(10, 1)
    received = [block async for block in receiver]
    await asyncio.gather(*tasks)

    assert received == blocks
    assert manager.state[POOL_A].reserve_0 == 7
    assert [(f.from_block, f.to_block) for f in middleware.filters] == [(11, 11), (12, 12)]
    assert [change.block_number for change in manager.state_change_cache] == [12, 11]
    assert manager.state_change_cache.front().state_change[0].reserve_0 == 0


@pytest.mark.asyncio
async def test_listen_for_state_changes_sends_updated_addresses():
    middleware = FakeMiddleware(
        [[log_at(POOL_A, 11, 3), log_at(POOL_B, 11, 4)], [], [log_at(POOL_B, 13, 9)]]
    )
    blocks = [Block(number=n) for n in (11, 12, 13)]
    manager = StateSpaceManager(
        [FakePool(POOL_A), FakePool(POOL_B)], middleware, FakeStream(blocks)
    )

    receiver, tasks = await manager.listen_for_state_changes(10, 4)
    received = [update async for update in receiver]
    await asyncio.gather(*tasks)

    assert received == [[POOL_A, POOL_B], [POOL_B]]
    assert manager.state[POOL_B].reserve_0 == 9
    assert len(manager.state_change_cache) == 3


@pytest.mark.asyncio
async def test_listen_for_updates_syncs_range_after_gap():
    middleware = FakeMiddleware([[log_at(POOL_A, 14, 8)]])
    manager = StateSpaceManager(
        [FakePool(POOL_A)], middleware, FakeStream([Block(number=15)])
    )

    tasks = await manager.listen_for_updates(10, 1)
    await asyncio.gather(*tasks)

    assert (middleware.filters[0].from_block, middleware.filters[0].to_block) == (11, 15)
    assert manager.state[POOL_A].reserve_0 == 8
    assert manager.state_change_cache.front().block_number == 14


@pytest.mark.asyncio
async def test_empty_logs_record_every_block_in_range():
    manager = StateSpaceManager(
        [FakePool(POOL_A)], FakeMiddleware(), FakeStream([Block(number=20)])
    )

    tasks = await manager.listen_for_updates(10, 1)
    await asyncio.gather(*tasks)

    assert [c.block_number for c in manager.state_change_cache] == list(range(20, 10, -1))


@pytest.mark.asyncio
async def test_block_without_number_raises():
    middleware = FakeMiddleware()
    manager = StateSpaceManager(
        [FakePool(POOL_A)], middleware, FakeStream([Block(number=None)])
    )

    tasks = await manager.listen_for_updates(10, 1)
    results = await asyncio.gather(*tasks, return_exceptions=True)

    assert isinstance(results[1], BlockNumberNotFound)
    assert str(results[1]) == "Block number not found"
    assert middleware.filters == []
    assert len(manager.state_change_cache) == 0


@pytest.mark.asyncio
async def test_reorg_past_cache_raises():
    manager = StateSpaceManager(
        [FakePool(POOL_A)], FakeMiddleware(), FakeStream([Block(number=5)])
    )

    receiver, tasks = await manager.listen_for_new_blocks(10, 1)
    received = [block async for block in receiver]
    results = await asyncio.gather(*tasks, return_exceptions=True)

    assert received == []
    assert isinstance(results[1], NoStateChangesInCache)


@pytest.mark.asyncio
async def test_middleware_failure_is_wrapped():
    failure = ConnectionError("down")
    manager = StateSpaceManager(
        [FakePool(POOL_A)], FakeMiddleware(error=failure), FakeStream([Block(number=11)])
    )

    tasks = await manager.listen_for_updates(10, 1)
    results = await asyncio.gather(*tasks, return_exceptions=True)

    assert isinstance(results[1], StateSpaceError)
    assert results[1].message == "Middleware error"
    assert results[1].__cause__ is failure