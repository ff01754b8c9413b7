"""Tests for growing in-flight assistant messages from fragments."""

import itertools

from agentstream.schemas.chat import ToolCommand, ToolStatus
from agentstream.services.dedup import is_local_id
from agentstream.services.reassembler import DeltaReassembler


def _deltas(text: str, cuts: list[int]) -> list[tuple[int, str]]:
    bounds = [0, *cuts, len(text)]
    return [(a, text[a:b]) for a, b in itertools.pairwise(bounds)]


def test_deltas_concatenate_in_offset_order():
    r = DeltaReassembler()
    for offset, chunk in _deltas("The quick brown fox", [3, 9, 15]):
        assert r.apply_delta("m1", chunk, offset) is None
    assert r.text == "The quick brown fox"
    assert r.current.last_offset == len("The quick brown fox")

    msg = r.finalize()
    assert msg.id == "m1"
    assert msg.content == "The quick brown fox"
    assert msg.role == "assistant"
    assert not msg.provisional
    assert r.current is None


def test_replayed_and_overlapping_deltas_are_not_duplicated():
    r = DeltaReassembler()
    r.apply_delta("m1", "Hel", 0)
    r.apply_delta("m1", "lo", 3)
    r.apply_delta("m1", "lo", 3)  # replay
    r.apply_delta("m1", "llo wor", 2)  # overlap
    assert r.text == "Hello wor"


def test_offset_zero_resets_stale_buffer():
    r = DeltaReassembler()
    r.apply_delta("m1", "stale text", 0)
    r.apply_delta("m1", "fresh", 0)
    assert r.text == "fresh"


def test_new_message_id_flushes_previous_buffer():
    r = DeltaReassembler()
    r.apply_delta("m1", "first", 0)
    displaced = r.apply_delta("m2", "second", 0)
    assert displaced.id == "m1"
    assert displaced.content == "first"
    assert r.current.message_id == "m2"


def test_snapshot_replaces_buffer():
    r = DeltaReassembler()
    r.apply_delta("m1", "Hel", 0)
    r.apply_snapshot("m1", "Hello, wor")
    assert r.text == "Hello, wor"
    assert r.current.last_offset == 10

    r.apply_delta("m1", "ld", 10)
    assert r.text == "Hello, world"


def test_open_without_id_never_creates_second_buffer():
    r = DeltaReassembler()
    r.open()
    first = r.current
    r.open()
    assert r.current is first
    assert first.provisional
    assert is_local_id(first.message_id)


def test_provisional_buffer_adopts_server_id():
    r = DeltaReassembler()
    r.open()
    assert r.apply_delta("m9", "x", 0) is None
    assert r.current.message_id == "m9"
    assert not r.current.provisional


def test_legacy_append_uses_ambient_buffer():
    r = DeltaReassembler()
    r.append("Hello ")
    r.append("world")
    msg = r.finalize()
    assert msg.content == "Hello world"
    assert msg.provisional


def test_finalize_other_id_leaves_confirmed_buffer_open():
    r = DeltaReassembler()
    r.apply_delta("m1", "abc", 0)
    assert r.finalize("m2") is None
    assert r.current.message_id == "m1"


def test_finalize_empty_buffer_produces_nothing():
    r = DeltaReassembler()
    r.open()
    assert r.finalize() is None
    assert r.current is None


def test_tools_ride_along_with_the_message():
    r = DeltaReassembler()
    r.add_tools([ToolCommand(name="Bash", status=ToolStatus.ERROR)])
    r.append("Blocked.")
    msg = r.finalize()
    assert msg.commands[0].name == "Bash"
    assert msg.commands[0].status is ToolStatus.ERROR


def test_clear_discards_without_message():
    r = DeltaReassembler()
    r.apply_delta("m1", "partial", 0)
    r.clear()
    assert r.current is None
    assert r.finalize() is None


def test_every_delivery_opens_a_buffer_when_none_is_open():
    r = DeltaReassembler()
    assert r.apply_snapshot("m1", "caught up") is None
    assert r.current.message_id == "m1"

    r.clear()
    r.add_tools([ToolCommand(name="Read")], "m2")
    assert r.current.message_id == "m2"
    assert r.current.commands[0].name == "Read"

    displaced = r.append("next", "m3")
    assert displaced.id == "m2"
    assert r.text == "next"
