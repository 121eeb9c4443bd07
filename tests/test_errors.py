import pytest

from ammstate.errors import (
    AlreadyListeningForStateChanges,
    AMMError,
    BlockNumberNotFound,
    CapacityError,
    CheckpointError,
    EventLogError,
    IncongruentAMMs,
    LogBlockNumberNotFound,
    NoStateChangesInCache,
    PopFrontError,
    StateChangeError,
    StateSpaceError,
)


@pytest.mark.parametrize(
    ("cls", "expected"),
    [
        (StateChangeError, "State change error"),
        (NoStateChangesInCache, "No state changes in cache"),
        (PopFrontError, "Error when removing a state change from the front of the deque"),
        (CapacityError, "State change cache capacity error"),
        (EventLogError, "Event log error"),
        (BlockNumberNotFound, "Block number not found"),
        (AlreadyListeningForStateChanges, "Already listening for state changes"),
        (AMMError, "AMM error"),
    ],
)
def test_default_messages(cls, expected):
    err = cls()
    assert str(err) == expected
    assert err.message == expected


def test_custom_message_overrides_default():
    err = CapacityError("cache overflow at block 7")
    assert str(err) == "cache overflow at block 7"
    assert err.message == "cache overflow at block 7"


@pytest.mark.parametrize(
    ("cls", "base"),
    [
        (NoStateChangesInCache, StateChangeError),
        (PopFrontError, StateChangeError),
        (CapacityError, StateChangeError),
        (EventLogError, StateChangeError),
        (LogBlockNumberNotFound, EventLogError),
        (StateChangeError, StateSpaceError),
        (BlockNumberNotFound, StateSpaceError),
        (AlreadyListeningForStateChanges, StateSpaceError),
        (IncongruentAMMs, AMMError),
        (CheckpointError, AMMError),
        (AMMError, StateSpaceError),
    ],
)
def test_hierarchy(cls, base):
    err = cls("raised for hierarchy check")
    with pytest.raises(base) as info:
        raise err
    assert info.value is err
    assert isinstance(info.value, base)
    assert info.value.message == "raised for hierarchy check"


def test_state_change_errors_caught_as_state_space_error():
    err = LogBlockNumberNotFound("missing block 3")
    assert err.message == "missing block 3"
    assert str(err) == "missing block 3"
    assert isinstance(err, EventLogError)
    assert isinstance(err, StateChangeError)
    assert isinstance(err, StateSpaceError)
    with pytest.raises(StateSpaceError) as info:
        raise err
    assert info.value is err
    assert info.value.message == "missing block 3"


def test_sibling_errors_are_distinct():
    capacity = CapacityError()
    block_missing = BlockNumberNotFound()
    incongruent = IncongruentAMMs()
    assert not isinstance(capacity, PopFrontError)
    assert str(capacity) == "State change cache capacity error"
    assert not isinstance(block_missing, StateChangeError)
    assert str(block_missing) == "Block number not found"
    assert not isinstance(incongruent, StateChangeError)
    assert isinstance(incongruent, AMMError)


def test_subclass_messages_differ_from_base():
    assert str(LogBlockNumberNotFound()) != str(EventLogError())
    assert str(IncongruentAMMs()) != str(AMMError())
    assert str(CheckpointError()) != str(AMMError())