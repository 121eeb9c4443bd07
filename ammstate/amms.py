"""Batch population and filtering of AMMs of a single kind."""

from __future__ import annotations

from typing import Any, Iterable, Iterator, Protocol, Sequence

from .cache import AMMKind
from .errors import AMMError, IncongruentAMMs

UNISWAP_V2_BATCH_SIZE = 127
UNISWAP_V3_BATCH_SIZE = 76


class PoolDataMiddleware(Protocol):
    """A chain client able to fill in pool data for a batch of AMMs."""

    async def get_uniswap_v2_pool_data(self, amms: list[Any]) -> None: ...

    async def get_uniswap_v3_pool_data(
        self, amms: list[Any], block_number: int | None
    ) -> None: ...


def amms_are_congruent(amms: Iterable[Any]) -> bool:
    """Return True when every AMM is of the same kind."""
    return len({amm.kind for amm in amms}) <= 1


def _chunks(items: Sequence[Any], size: int) -> Iterator[list[Any]]:
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


async def populate_amms(
    amms: Sequence[Any], block_number: int | None, middleware: PoolDataMiddleware
) -> None:
    """Fetch pool data for AMMs of one kind, in batches the kind allows.

    Raises IncongruentAMMs when the AMMs are of mixed kinds.
    """
    amms = list(amms)
    if not amms:
        return
    if not amms_are_congruent(amms):
        raise IncongruentAMMs()

    kind = amms[0].kind
    try:
        if kind is AMMKind.UNISWAP_V2:
            for chunk in _chunks(amms, UNISWAP_V2_BATCH_SIZE):
                await middleware.get_uniswap_v2_pool_data(chunk)
        elif kind is AMMKind.UNISWAP_V3:
            for chunk in _chunks(amms, UNISWAP_V3_BATCH_SIZE):
                await middleware.get_uniswap_v3_pool_data(chunk, block_number)
        else:
            for amm in amms:
                await amm.populate_data(None, middleware)
    except AMMError:
        raise
    except Exception as exc:
        raise AMMError("Batch request error") from exc


def _is_zero(address: Any) -> bool:
    if address is None:
        return True
    if isinstance(address, int):
        return address == 0
    if isinstance(address, (bytes, bytearray)):
        return not any(address)
    digits = str(address).lower().removeprefix("0x")
    return not digits.strip("0")


def _token_pair(amm: Any) -> tuple[Any, Any]:
    if amm.kind is AMMKind.ERC4626_VAULT:
        return amm.vault_token, amm.asset_token
    return amm.token_a, amm.token_b


def remove_empty_amms(amms: Iterable[Any]) -> list[Any]:
    """Keep only the AMMs whose two tokens are both set."""
    return [
        amm
        for amm in amms
        if not any(_is_zero(token) for token in _token_pair(amm))
    ]