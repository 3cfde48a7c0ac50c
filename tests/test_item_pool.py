from __future__ import annotations

import pytest

from slpkit.config import DecodeConfig
from slpkit.replay import ITEM_POOL_SIZE, ItemFrame, ItemPool, load_replay

from slp_capture import HUMAN_FALCO, HUMAN_FOX, CaptureBuilder


def test_item_pool_addresses_slots_by_spawn_id() -> None:
    pool = ItemPool(4)

    slot, started = pool.observe(1, 7)
    assert started
    assert pool.get(1) is None  # no frames yet
    slot.frames.append(ItemFrame(frame=0))
    assert pool.get(1) is slot
    assert pool.observe(1, 7) == (slot, False)
    assert len(pool) == 1


def test_item_pool_reuse_discards_previous_lifetime() -> None:
    pool = ItemPool(4)
    first, _ = pool.observe(1, 7)
    first.frames.append(ItemFrame(frame=0))

    second, started = pool.observe(5, 9)

    assert started
    assert second is first
    assert second.spawn_id == 5
    assert second.type == 9
    assert second.frames == []
    assert pool.get(1) is None
    assert list(pool.live_items()) == []


def test_spawn_ids_a_capacity_apart_share_a_slot() -> None:
    pool = ItemPool()
    first, _ = pool.observe(3, 7)
    first.frames.append(ItemFrame(frame=0))

    second, started = pool.observe(3 + ITEM_POOL_SIZE, 7)

    assert started
    assert second is first
    assert pool.slot_index(3) == pool.slot_index(3 + ITEM_POOL_SIZE)
    assert pool.get(3) is None


def test_item_pool_rejects_non_positive_capacity() -> None:
    with pytest.raises(ValueError):
        ItemPool(0)


def _capture_with_items(version: tuple[int, int, int] = (3, 14, 0)) -> CaptureBuilder:
    builder = CaptureBuilder(version)
    builder.game_start(players=(HUMAN_FOX, HUMAN_FALCO))
    builder.frame(-123, {0: {}, 1: {}})
    builder.item(-123, 3, type=0x36, xpos=1.0, owner=1, damage=4)
    builder.frame(-122, {0: {}, 1: {}})
    builder.item(-122, 3, type=0x36, xpos=2.0, owner=1)
    # Rollback resends frame -122.
    builder.item(-122, 3, type=0x36, xpos=2.5, owner=1)
    builder.item(-122, 7, type=0x63, xpos=-4.0, owner=0)
    builder.frame(-121, {0: {}, 1: {}})
    builder.item(-121, 3, type=0x36, xpos=3.0, owner=1)
    return builder.game_end(end_type=2, placement_0=0, placement_1=1)


def test_decoded_items_keep_one_entry_per_frame() -> None:
    replay = load_replay(_capture_with_items().build()).replay

    assert len(replay.items) == 2
    item = replay.items.get(3)
    assert item is not None
    assert item.type == 0x36
    assert [frame.frame for frame in item.frames] == [-123, -122, -121]
    assert [frame.xpos for frame in item.frames] == [1.0, 2.5, 3.0]
    assert item.frames[0].damage == 4
    assert all(frame.owner == 1 for frame in item.frames)
    other = replay.items.get(7)
    assert other is not None
    assert other.num_frames == 1
    assert other.frames[0].owner == 0


def test_small_item_pool_recycles_slots() -> None:
    builder = CaptureBuilder()
    builder.game_start(players=(HUMAN_FOX,))
    builder.frame(-123, {0: {}})
    builder.item(-123, 1, type=0x36, xpos=1.0)
    builder.frame(-122, {0: {}})
    builder.item(-122, 5, type=0x63, xpos=5.0)
    builder.game_end(end_type=2, placement_0=0)

    replay = load_replay(builder.build(), config=DecodeConfig(item_pool_size=4)).replay

    assert replay.items.capacity == 4
    assert replay.items.get(1) is None
    recycled = replay.items.get(5)
    assert recycled is not None
    assert recycled.type == 0x63
    assert [frame.xpos for frame in recycled.frames] == [5.0]


def test_item_fields_missing_from_older_captures_use_defaults() -> None:
    replay = load_replay(_capture_with_items((3, 0, 0)).build()).replay

    item = replay.items.get(3)
    assert item is not None
    assert [frame.xpos for frame in item.frames] == [1.0, 2.5, 3.0]
    assert all(frame.owner == -1 for frame in item.frames)
    assert all(frame.flags_1 == 0 for frame in item.frames)
