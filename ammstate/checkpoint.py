"""Checkpoint files of synced AMMs, and resuming a sync from one."""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping, Protocol

from .amms import amms_are_congruent, populate_amms, remove_empty_amms
from .cache import AMMKind
from .errors import AMMError, CheckpointError, IncongruentAMMs


class CheckpointCodec(Protocol):
    """Converts factories and AMMs to and from JSON-ready mappings."""

    def encode_factory(self, factory: Any) -> Any: ...

    def decode_factory(self, data: Any) -> Any: ...

    def encode_amm(self, amm: Any) -> Any: ...

    def decode_amm(self, data: Any) -> Any: ...


@dataclass
class Checkpoint:
    """The factories and AMMs synced up to a block."""

    timestamp: int
    block_number: int
    factories: list[Any]
    amms: list[Any]

    def to_dict(self, codec: CheckpointCodec) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "block_number": self.block_number,
            "factories": [codec.encode_factory(f) for f in self.factories],
            "amms": [codec.encode_amm(a) for a in self.amms],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], codec: CheckpointCodec) -> Checkpoint:
        return cls(
            timestamp=int(data["timestamp"]),
            block_number=int(data["block_number"]),
            factories=[codec.decode_factory(f) for f in data["factories"]],
            amms=[codec.decode_amm(a) for a in data["amms"]],
        )


def _read_checkpoint(path: str | Path, codec: CheckpointCodec) -> Checkpoint:
    try:
        data = json.loads(Path(path).read_text())
        return Checkpoint.from_dict(data, codec)
    except (OSError, ValueError, KeyError, TypeError) as exc:
        raise CheckpointError(f"Could not read checkpoint {path}") from exc


async def _current_block(middleware: Any) -> int:
    try:
        return int(await middleware.get_block_number())
    except AMMError:
        raise
    except Exception as exc:
        raise AMMError("Middleware error") from exc


async def _collect(tasks: list[asyncio.Task[list[Any]]]) -> list[Any]:
    """Await tasks in order, concatenating their results; cancel the rest on failure."""
    results: list[Any] = []
    try:
        for task in tasks:
            results.extend(await task)
    except BaseException:
        for task in tasks:
            task.cancel()
        raise
    return results


async def _new_amms_from_factory(
    factory: Any, from_block: int, to_block: int, step: int, middleware: Any
) -> list[Any]:
    amms = list(await factory.get_all_pools_from_logs(from_block, to_block, step, middleware))
    await factory.populate_amm_data(amms, to_block, middleware)
    return remove_empty_amms(amms)


async def get_new_amms_from_range(
    factories: Iterable[Any], from_block: int, to_block: int, step: int, middleware: Any
) -> list[asyncio.Task[list[Any]]]:
    """Start one task per factory fetching and populating AMMs created in the range."""
    return [
        asyncio.create_task(
            _new_amms_from_factory(factory, from_block, to_block, step, middleware)
        )
        for factory in factories
    ]


async def get_new_pools_from_range(
    factories: Iterable[Any], from_block: int, to_block: int, step: int, middleware: Any
) -> list[asyncio.Task[list[Any]]]:
    """Start one task per factory fetching and populating pools created in the range."""
    return await get_new_amms_from_range(factories, from_block, to_block, step, middleware)


async def batch_sync_amms_from_checkpoint(
    amms: Iterable[Any], block_number: int | None, middleware: Any
) -> list[Any]:
    """Refresh pool data for AMMs of one kind and drop the empty ones.

    Vaults are not batch synced and yield an empty list.
    """
    amms = list(amms)
    if not amms or amms[0].kind is AMMKind.ERC4626_VAULT:
        return []
    if not amms_are_congruent(amms):
        raise IncongruentAMMs()
    await populate_amms(amms, block_number, middleware)
    return remove_empty_amms(amms)


def sort_amms(amms: Iterable[Any]) -> tuple[list[Any], list[Any], list[Any]]:
    """Split AMMs into Uniswap V2 pools, Uniswap V3 pools and ERC4626 vaults."""
    groups: dict[AMMKind, list[Any]] = {kind: [] for kind in AMMKind}
    for amm in amms:
        groups[amm.kind].append(amm)
    return (
        groups[AMMKind.UNISWAP_V2],
        groups[AMMKind.UNISWAP_V3],
        groups[AMMKind.ERC4626_VAULT],
    )


def construct_checkpoint(
    factories: Iterable[Any],
    amms: Iterable[Any],
    latest_block: int,
    checkpoint_path: str | Path,
    codec: CheckpointCodec,
) -> None:
    """Write a checkpoint stamped with the current time to ``checkpoint_path``."""
    checkpoint = Checkpoint(int(time.time()), latest_block, list(factories), list(amms))
    try:
        text = json.dumps(checkpoint.to_dict(codec), indent=2)
        Path(checkpoint_path).write_text(text)
    except (OSError, TypeError, ValueError) as exc:
        raise CheckpointError(f"Could not write checkpoint {checkpoint_path}") from exc


def deconstruct_checkpoint(
    checkpoint_path: str | Path, codec: CheckpointCodec
) -> tuple[list[Any], int]:
    """Return the AMMs and block number stored in a checkpoint."""
    checkpoint = _read_checkpoint(checkpoint_path, codec)
    return checkpoint.amms, checkpoint.block_number


async def sync_amms_from_checkpoint(
    path_to_checkpoint: str | Path, step: int, middleware: Any, codec: CheckpointCodec
) -> tuple[list[Any], list[Any]]:
    """Refresh the checkpoint's AMMs, add those created since, and rewrite the checkpoint.

    Returns the checkpoint's factories and the synced AMMs.
    """
    current_block = await _current_block(middleware)
    checkpoint = _read_checkpoint(path_to_checkpoint, codec)

    uniswap_v2_pools, uniswap_v3_pools, vaults = sort_amms(checkpoint.amms)
    if vaults:
        raise AMMError("ERC4626 vaults cannot be synced from a checkpoint")

    tasks = [
        asyncio.create_task(batch_sync_amms_from_checkpoint(pools, current_block, middleware))
        for pools in (uniswap_v2_pools, uniswap_v3_pools)
        if pools
    ]
    tasks.extend(
        await get_new_amms_from_range(
            checkpoint.factories, checkpoint.block_number, current_block, step, middleware
        )
    )
    aggregated = await _collect(tasks)

    construct_checkpoint(
        checkpoint.factories, aggregated, current_block, path_to_checkpoint, codec
    )
    return checkpoint.factories, aggregated