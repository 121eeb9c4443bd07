"""Exceptions raised while tracking AMM state and syncing pools."""

from __future__ import annotations


class _DescribedError(Exception):
    """Exception carrying a default message when none is given."""

    default_message = "Error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(self.default_message if message is None else message)

    @property
    def message(self) -> str:
        return str(self.args[0])


class StateSpaceError(_DescribedError):
    """The state space could not be kept in step with the chain."""

    default_message = "State space error"


class StateChangeError(StateSpaceError):
    """The state change cache could not be updated or unwound."""

    default_message = "State change error"


class NoStateChangesInCache(StateChangeError):
    """An unwind reached past the oldest cached state change."""

    default_message = "No state changes in cache"


class PopFrontError(StateChangeError):
    """A state change that was present could not be removed."""

    default_message = "Error when removing a state change from the front of the deque"


class CapacityError(StateChangeError):
    """The state change cache has no room for another entry."""

    default_message = "State change cache capacity error"


class EventLogError(StateChangeError):
    """An event log is missing data needed to apply it."""

    default_message = "Event log error"


class LogBlockNumberNotFound(EventLogError):
    """An event log carries no block number."""

    default_message = "Log block number not found"


class BlockNumberNotFound(StateSpaceError):
    """A block from the stream carries no block number."""

    default_message = "Block number not found"


class AlreadyListeningForStateChanges(StateSpaceError):
    """A listener was started while one is already running."""

    default_message = "Already listening for state changes"


class AMMError(StateSpaceError):
    """An AMM could not be fetched, populated or synced."""

    default_message = "AMM error"


class IncongruentAMMs(AMMError):
    """A batch of AMMs mixes different kinds of pool."""

    default_message = "Incongruent AMMs"


class CheckpointError(AMMError):
    """A checkpoint file could not be written or read."""

    default_message = "Checkpoint error"