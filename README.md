# ammstate

`ammstate` keeps an in-memory picture of automated market maker (AMM) pools up to date from chain event logs. When the chain reorganises, it rolls that picture back to an earlier block. It also saves and restores a set of pools as JSON checkpoints.

The library has no runtime dependencies. You supply the chain client, the pool objects and the factories as ordinary Python objects. They only need the attributes and methods listed under [What you supply](#what-you-supply).

## Installation

```
pip install ammstate
```

To install the test extra and run the tests:

```
pip install "ammstate[test]"
pytest
```

## Modules

| Module | Contents |
| --- | --- |
| `ammstate.errors` | The exception hierarchy. |
| `ammstate.cache` | `AMMKind`, `Log`, `StateChange`, `StateChangeCache` and the functions that apply logs and unwind changes. |
| `ammstate.manager` | `Block`, `Filter` and `StateSpaceManager`, which follows new blocks in background tasks. |
| `ammstate.amms` | `amms_are_congruent`, `populate_amms` and `remove_empty_amms`. |
| `ammstate.checkpoint` | `Checkpoint`, `CheckpointCodec` and the functions that read, write and resume from checkpoints. |
| `ammstate.sync` | `sync_amms`. |

## State space and state changes (`ammstate.cache`)

A state space is a plain `dict` that maps each pool address to its pool object. `initialize_state_space(amms)` builds one. When two pools share an address, the later one wins.

`AMMKind` names the three pool kinds:

- `UNISWAP_V2`
- `UNISWAP_V3`
- `ERC4626_VAULT`

A `Log` is a frozen dataclass with these fields:

- `address`
- `block_number`, which may be `None`
- `topics`
- `data`

`get_block_number_from_log(log)` returns the block number. It raises `LogBlockNumberNotFound` when the number is missing.

A `StateChange` holds a `block_number` and a `state_change`. The `state_change` is either a list of pool copies taken before that block changed them, or `None` when no pool changed.

`StateChangeCache` is a bounded deque with the newest entry at the front. Its default `capacity` is 150. It supports:

- `push_front`, which raises `CapacityError` when the cache is full;
- `pop_front` and `pop_back`, which raise `IndexError` when the cache is empty;
- `front()`, which returns `None` when the cache is empty;
- `is_full()`;
- `len()` and iteration, newest entry first.

### Functions

- `add_state_change_to_cache(cache, change)` pushes a change. When the cache is full, it first drops the oldest entry.
- `handle_state_changes_from_logs(state, cache, logs)` does the following:
  - For each log whose address is in the state space, it saves a deep copy of the pool and then calls the pool's `sync_from_log(log)`.
  - It records one `StateChange` per block that the logs cover.
  - It returns the addresses it updated, in the order it first saw them.
  - When `logs` is empty, it returns an empty list and records nothing.
- `unwind_state_changes(state, cache, block)` pops every cached change whose block is at or above `block`, newest first. It writes the saved pool copies back into the state space. If the cache runs empty before an older entry is reached, it raises `NoStateChangesInCache`.

## Following new blocks (`ammstate.manager`)

```python
manager = StateSpaceManager(amms, middleware, stream_middleware)
blocks, tasks = await manager.listen_for_new_blocks(last_synced_block=100, channel_buffer=32)
async for block in blocks:
    ...
```

### The block filter

`get_block_filter()` returns a `Filter`. Its `topics` are the event signatures of each pool kind present in the state space, taken from the first pool of that kind. `Filter.with_range(from_block, to_block)` returns a copy limited to that inclusive block range.

### How each block is processed

Each listener starts two `asyncio` tasks. One subscribes to blocks. The other handles each `Block` as it arrives:

1. If the block's number is at or below the last synced block, the manager treats this as a reorg. It unwinds the cache down to that number and resumes from the block before it.
2. It fetches the logs for the range from the next block up to the new head.
3. If there are logs, it applies them with `handle_state_changes_from_logs`. If there are none, it records an empty `StateChange` for every block in the range.
4. It sends a notification, as described below.

A block without a number stops the processing task with `BlockNumberNotFound`. When the processing task ends, its output channel is closed.

### Listener methods

| Method | Returns |
| --- | --- |
| `listen_for_new_blocks(last_synced_block, channel_buffer)` | A channel that yields each processed `Block`, and the two tasks. |
| `listen_for_state_changes(last_synced_block, channel_buffer)` | A channel that yields the list of updated addresses for each block that had logs, and the two tasks. |
| `listen_for_updates(last_synced_block, channel_buffer)` | Only the two tasks. |

The returned channels are async iterables, and `recv()` returns `None` once a channel is closed and drained. `channel_buffer` bounds the number of queued items.

### Errors from the tasks

- A failure to subscribe is raised from the subscribing task as `StateSpaceError("Pubsub client error")`.
- A failure to fetch logs is raised from the processing task as `StateSpaceError("Middleware error")`.

## Populating pools (`ammstate.amms`)

- `amms_are_congruent(amms)` is true when all the pools are of one kind.
- `populate_amms(amms, block_number, middleware)` fetches pool data. It raises `IncongruentAMMs` for mixed kinds. How it fetches depends on the kind:
  - Uniswap V2 pools go to `middleware.get_uniswap_v2_pool_data` in batches of 127.
  - Uniswap V3 pools go to `middleware.get_uniswap_v3_pool_data` in batches of 76.
  - Vaults call their own `populate_data(None, middleware)` one at a time.

  Any other failure is raised as `AMMError("Batch request error")`.
- `remove_empty_amms(amms)` keeps only the pools whose two tokens are set. The token attributes are `token_a` and `token_b` for pools, and `vault_token` and `asset_token` for vaults. A token counts as unset when it is `None`, zero, all-zero bytes, or an all-zero hex string.

## Syncing (`ammstate.sync`)

`await sync_amms(factories, middleware, checkpoint_path, step, codec=None)` works as follows:

1. It reads the current block number.
2. For each factory it calls `get_all_amms(block, middleware, step)`, populates the pools and drops empty ones. The factories run concurrently.
3. For Uniswap V2 factories, it sets each pool's `fee` to the factory's `fee`.
4. If `checkpoint_path` is given, it writes a checkpoint. A `codec` is then required; without one it raises `ValueError`.

It returns `(amms, block_number)`.

## Checkpoints (`ammstate.checkpoint`)

A `Checkpoint` has four fields:

- `timestamp`, in Unix seconds;
- `block_number`;
- `factories`;
- `amms`.

`to_dict(codec)` and `Checkpoint.from_dict(data, codec)` convert it to and from plain data.

A `CheckpointCodec` is any object with these four methods:

- `encode_factory`
- `decode_factory`
- `encode_amm`
- `decode_amm`

### Functions

- `construct_checkpoint(factories, amms, latest_block, path, codec)` writes indented JSON stamped with the current time.
- `deconstruct_checkpoint(path, codec)` returns `(amms, block_number)`.
- `sort_amms(amms)` splits pools into three lists: Uniswap V2 pools, Uniswap V3 pools and vaults.
- `batch_sync_amms_from_checkpoint(amms, block_number, middleware)` re-populates pools of one kind and drops empty ones. It returns an empty list for vaults.
- `get_new_amms_from_range(factories, from_block, to_block, step, middleware)` starts one task per factory. Each task calls `get_all_pools_from_logs` and then `populate_amm_data`, and drops empty pools. `get_new_pools_from_range` does the same.
- `sync_amms_from_checkpoint(path, step, middleware, codec)` resumes from a checkpoint:
  1. It re-populates the checkpoint's pools at the current block.
  2. It adds the pools the factories created since the checkpoint's block.
  3. It rewrites the checkpoint.

  It returns `(factories, amms)`. A checkpoint that contains vaults is refused with `AMMError`.

Failures to read or write a checkpoint raise `CheckpointError`.

## What you supply

| Object | Required attributes and methods |
| --- | --- |
| Pools | `address`, `kind` (an `AMMKind`), `sync_from_log(log)`, `sync_on_event_signatures()`, and the token attributes above. Vaults also need `populate_data(block, middleware)`. |
| Middleware | `get_block_number()`, `get_logs(filter)`, `get_uniswap_v2_pool_data(amms)` and `get_uniswap_v3_pool_data(amms, block_number)`, all awaitable. |
| Stream middleware | An awaitable `subscribe_blocks()` that returns an async iterable of `Block`. |
| Factories | `kind`, `fee` (Uniswap V2 only), and the awaitable methods `get_all_amms`, `get_all_pools_from_logs` and `populate_amm_data`. |

## What this package does not do

- It has no chain client, no RPC or websocket connection, and no ABI decoding.
- It has no concrete Uniswap V2 pool, Uniswap V3 pool or ERC4626 vault types, and no factory implementations. Pool math and log decoding belong to the objects you supply.
- It cannot resume vaults from a checkpoint.
- It has no command-line tool.

## Errors

All exceptions live in `ammstate.errors` and derive from `StateSpaceError`:

- `StateChangeError`
  - `NoStateChangesInCache`
  - `PopFrontError`
  - `CapacityError`
  - `EventLogError`
    - `LogBlockNumberNotFound`
- `BlockNumberNotFound`
- `AlreadyListeningForStateChanges`
- `AMMError`
  - `IncongruentAMMs`
  - `CheckpointError`