import pytest

from freedompro_local.state import SOURCE_COMMAND, SOURCE_GLOBAL_POLL, SOURCE_STREAM, StateCache


def test_seed_defaults_to_off_and_keeps_existing():
    cache = StateCache()
    cache.seed("u1")
    assert cache.read("u1") is False

    cache.write("u1", True, SOURCE_STREAM)
    cache.seed("u1")
    assert cache.read("u1") is True


def test_last_write_wins_with_increasing_sequence():
    cache = StateCache()
    first = cache.write("u1", True, SOURCE_COMMAND)
    second = cache.write("u1", False, SOURCE_GLOBAL_POLL)
    assert cache.read("u1") is False
    assert second.sequence > first.sequence
    assert cache.get("u1").source == SOURCE_GLOBAL_POLL


def test_read_unknown_raises():
    with pytest.raises(KeyError):
        StateCache().read("missing")


def test_snapshot_is_a_copy():
    cache = StateCache()
    cache.write("u1", True, SOURCE_STREAM)
    snap = cache.snapshot()
    cache.write("u2", True, SOURCE_STREAM)
    assert list(snap) == ["u1"]
    assert len(cache) == 2
