"""Syncing every AMM created by a set of factories."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Iterable

from .amms import populate_amms, remove_empty_amms
from .cache import AMMKind
from .checkpoint import CheckpointCodec, _collect, _current_block, construct_checkpoint


async def _sync_factory(factory: Any, current_block: int, middleware: Any, step: int) -> list[Any]:
    amms = list(await factory.get_all_amms(current_block, middleware, step))
    await populate_amms(amms, current_block, middleware)
    amms = remove_empty_amms(amms)

    if factory.kind is AMMKind.UNISWAP_V2:
        for amm in amms:
            if amm.kind is AMMKind.UNISWAP_V2:
                amm.fee = factory.fee
    return amms


async def sync_amms(
    factories: Iterable[Any],
    middleware: Any,
    checkpoint_path: str | Path | None,
    step: int,
    codec: CheckpointCodec | None = None,
) -> tuple[list[Any], int]:
    """Fetch and populate every factory's AMMs at the current block.

    Writes a checkpoint when ``checkpoint_path`` is given, which then needs a
    ``codec``. Returns the AMMs and the block they were synced at.
    """
    factories = list(factories)
    if checkpoint_path is not None and codec is None:
        raise ValueError("a codec is required to write a checkpoint")

    current_block = await _current_block(middleware)
    tasks = [
        asyncio.create_task(_sync_factory(factory, current_block, middleware, step))
        for factory in factories
    ]
    aggregated = await _collect(tasks)

    if checkpoint_path is not None and codec is not None:
        construct_checkpoint(factories, aggregated, current_block, checkpoint_path, codec)

    return aggregated, current_block