import asyncio

from agentgate.agent.batcher import GroupBatcher, GroupBatchSettings
from agentgate.bus.events import BatchMessage, InboundMessage
from agentgate.testing import FakeAdapter, group_msg


def _batcher(**settings) -> tuple[GroupBatcher, list]:
    flushed: list = []
    batcher = GroupBatcher(lambda item, adapter: flushed.append(item), GroupBatchSettings(**settings))
    return batcher, flushed


async def test_burst_is_flushed_as_one_batch_after_quiet_period() -> None:
    batcher, flushed = _batcher(default_interval_ms=30)
    adapter = FakeAdapter()

    for text in ("one", "two", "three"):
        batcher.on_message(group_msg(text), adapter)
    assert batcher.pending_count("fake:-200") == 3

    await asyncio.sleep(0.1)

    assert len(flushed) == 1
    batch = flushed[0]
    assert isinstance(batch, BatchMessage)
    assert [m.text for m in batch.messages] == ["one", "two", "three"]
    assert batch.group_name == "Team"
    assert batcher.pending_count("fake:-200") == 0


async def test_single_message_is_flushed_unwrapped() -> None:
    batcher, flushed = _batcher(default_interval_ms=20)

    batcher.on_message(group_msg("solo"), FakeAdapter())
    await asyncio.sleep(0.08)

    assert len(flushed) == 1
    assert isinstance(flushed[0], InboundMessage)
    assert flushed[0].text == "solo"


async def test_each_message_restarts_the_window() -> None:
    batcher, flushed = _batcher(default_interval_ms=50)
    adapter = FakeAdapter()

    batcher.on_message(group_msg("a"), adapter)
    await asyncio.sleep(0.03)
    batcher.on_message(group_msg("b"), adapter)
    await asyncio.sleep(0.03)
    assert flushed == []

    await asyncio.sleep(0.1)
    assert len(flushed) == 1
    assert [m.text for m in flushed[0].messages] == ["a", "b"]


async def test_groups_are_batched_independently() -> None:
    batcher, flushed = _batcher(default_interval_ms=20)
    adapter = FakeAdapter()

    batcher.on_message(group_msg("x", chat_id="-1"), adapter)
    batcher.on_message(group_msg("y", chat_id="-2"), adapter)
    await asyncio.sleep(0.08)

    assert sorted(item.chat_id for item in flushed) == ["-1", "-2"]


async def test_zero_interval_dispatches_immediately() -> None:
    batcher, flushed = _batcher(default_interval_ms=5000, intervals_ms={"fake": 0})

    batcher.on_message(group_msg("now"), FakeAdapter())

    assert [m.text for m in flushed] == ["now"]


async def test_instant_group_key_bypasses_debounce() -> None:
    batcher, flushed = _batcher(default_interval_ms=5000, instant_keys={"fake:-200"})

    batcher.on_message(group_msg("fast"), FakeAdapter())

    assert len(flushed) == 1


async def test_instant_group_dispatches_every_later_message_on_its_own() -> None:
    batcher, flushed = _batcher(default_interval_ms=5000, instant_keys={"fake:-200"})
    adapter = FakeAdapter()

    batcher.on_message(group_msg("first"), adapter)
    await asyncio.sleep(0.01)
    batcher.on_message(group_msg("second"), adapter)

    assert [m.text for m in flushed] == ["first", "second"]
    assert batcher.pending_count("fake:-200") == 0


async def test_instant_match_on_server_id() -> None:
    batcher, flushed = _batcher(default_interval_ms=5000, instant_keys={"fake:guild-1"})

    batcher.on_message(group_msg("hi", server_id="guild-1"), FakeAdapter())

    assert len(flushed) == 1


async def test_listening_group_marks_unmentioned_batches() -> None:
    batcher, flushed = _batcher(intervals_ms={"fake": 0}, listening_keys={"fake:-200"})
    adapter = FakeAdapter()

    batcher.on_message(group_msg("chatter"), adapter)
    batcher.on_message(group_msg("@bot help", was_mentioned=True), adapter)

    assert flushed[0].is_listening_mode is True
    assert flushed[1].is_listening_mode is False


async def test_stop_drops_pending_messages() -> None:
    batcher, flushed = _batcher(default_interval_ms=20)

    batcher.on_message(group_msg("lost"), FakeAdapter())
    batcher.stop()
    await asyncio.sleep(0.06)

    assert flushed == []
    assert batcher.pending_count("fake:-200") == 0
