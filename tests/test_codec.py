import pytest

from card_codec import (
    BLOCK_SIZE,
    CARD_SIZE,
    HEADER_SIZE,
    MemoryCard,
    SlotType,
    decode_title,
    header_checksum,
    region_code,
    region_name,
)
from card_formats import CardType
from tests.conftest import fix_checksum, make_block, make_save


def header_offset(slot):
    return 128 + slot * 128


def test_empty_image_is_all_free():
    card = MemoryCard()
    saves = card.get_saves()

    assert len(saves) == 15
    assert all(save.slot_type == SlotType.FORMATTED for save in saves)
    assert all(card.get_icon_frames(save.slot) == [] for save in saves)
    assert card.raw_image == bytes(CARD_SIZE)


def test_format_card(card):
    image = card.raw_image

    assert image[0:2] == b"MC"
    assert image[127] == 0x0E
    assert card.free_block_count() == 15

    for slot in range(15):
        assert card.slot_type(slot) == SlotType.FORMATTED
        assert image[header_offset(slot) + 8 : header_offset(slot) + 10] == b"\xff\xff"


def test_two_block_save_at_slot_zero(card):
    save = bytearray(make_save(2))
    save[8:10] = b"\x01\x00"
    fix_checksum(save)
    save = bytes(save)

    assert card.set_save_bytes(0, save)

    image = card.raw_image
    assert card.slot_type(0) == SlotType.INITIAL
    assert card.slot_type(1) == SlotType.END_LINK
    assert image[header_offset(0) + 8] == 1
    assert image[header_offset(1) + 8 : header_offset(1) + 10] == b"\xff\xff"
    assert card.get_save_bytes(0) == save
    assert card.changed


def test_save_descriptor(full_card):
    saves = full_card.get_saves()
    slots = [save.slot for save in saves if save.slot_type != SlotType.FORMATTED]
    assert slots == [0, 1, 3]

    save = full_card.get_save(3)
    assert save.name == "TEST SAVE"
    assert save.product_code == "SLUS-00001"
    assert save.identifier == "THREE"
    assert save.region == "America"
    assert save.region_raw == "BA"
    assert save.size == 24
    assert save.block_count == 3
    assert save.icon_frame_count == 3
    assert save.file_name == "BASLUS-00001THREE"


def test_link_slots_are_not_listed(full_card):
    listed = {save.slot for save in full_card.get_saves()}

    assert 2 not in listed
    assert {4, 5}.isdisjoint(listed)
    assert full_card.slot_type(4) == SlotType.MIDDLE_LINK
    assert full_card.slot_type(5) == SlotType.END_LINK


def test_find_save_links(full_card):
    assert full_card.find_save_links(0) == [0]
    assert full_card.find_save_links(1) == [1, 2]
    assert full_card.find_save_links(3) == [3, 4, 5]
    assert full_card.find_save_links(10) == [10]


def test_find_parent_slot(full_card):
    assert full_card.find_parent_slot(5) == 3
    assert full_card.find_parent_slot(4) == 3
    assert full_card.find_parent_slot(2) == 1
    assert full_card.find_parent_slot(3) == 3
    assert full_card.find_parent_slot(12) == 12


def test_chains_are_disjoint(full_card):
    seen = set()

    for save in full_card.get_saves():
        if save.slot_type in (SlotType.INITIAL, SlotType.DELETED_INITIAL):
            chain = full_card.find_save_links(save.slot)
            last = header_offset(chain[-1])
            assert full_card.raw_image[last + 8] == 0xFF
            assert seen.isdisjoint(chain)
            seen.update(chain)


def test_toggle_delete_twice_restores(full_card):
    before = full_card.raw_image

    full_card.toggle_delete_save(3)
    assert full_card.slot_type(3) == SlotType.DELETED_INITIAL
    assert full_card.slot_type(4) == SlotType.DELETED_MIDDLE_LINK
    assert full_card.slot_type(5) == SlotType.DELETED_END_LINK
    assert full_card.get_save(3).deleted
    assert full_card.find_save_links(3) == [3, 4, 5]

    full_card.toggle_delete_save(3)
    assert full_card.raw_image == before


def test_toggle_delete_from_link_slot(full_card):
    full_card.toggle_delete_save(2)

    assert full_card.slot_type(1) == SlotType.DELETED_INITIAL
    assert full_card.slot_type(2) == SlotType.DELETED_END_LINK


def test_format_save(full_card):
    full_card.format_save(1)

    for slot in (1, 2):
        assert full_card.slot_type(slot) == SlotType.FORMATTED
        assert full_card.block(slot) == bytes(BLOCK_SIZE)
        header = full_card.header(slot)
        assert header[0] == SlotType.FORMATTED
        assert header[8:10] == b"\xff\xff"

    assert full_card.free_block_count() == 11
    assert full_card.slot_type(3) == SlotType.INITIAL


def test_set_save_bytes_without_space_leaves_card_untouched(full_card):
    # 9 free slots are left, from slot 10 only 5.
    before = full_card.raw_image

    assert not full_card.set_save_bytes(10, make_save(6))
    assert full_card.raw_image == before
    assert not full_card.set_save_bytes(0, make_save(10))
    assert full_card.raw_image == before


def test_set_save_bytes_skips_used_slots(full_card):
    full_card.format_save(1)

    assert full_card.set_save_bytes(0, make_save(3, identifier=b"GAP"))
    assert full_card.find_save_links(1) == [1, 2, 6]
    assert full_card.get_save(1).identifier == "GAP"
    assert full_card.find_parent_slot(6) == 1


def test_set_save_bytes_rejects_empty_save(card):
    assert not card.set_save_bytes(0, make_save(1)[:HEADER_SIZE])


def test_checksums_after_mutations(full_card):
    full_card.toggle_delete_save(0)
    full_card.set_header_data(1, "SCES-00002", "NEW", "Europe")

    for slot in range(15):
        header = full_card.header(slot)
        assert header[127] == header_checksum(header)


def test_set_header_data(full_card):
    full_card.set_header_data(0, "SLPS-00003", "JPSAVE", "Japan")

    save = full_card.get_save(0)
    assert save.region == "Japan"
    assert save.region_raw == "BI"
    assert save.product_code == "SLPS-00003"
    assert save.identifier == "JPSAVE"
    assert full_card.header(0)[10:30] == b"BISLPS-00003JPSAVE\x00\x00"


def test_set_header_data_unknown_region(full_card):
    full_card.set_header_data(0, "SLUS-00001", "X", "Z")

    assert full_card.get_save(0).region_raw == "Z "
    assert full_card.get_save(0).region == "Z "


def test_region_mapping():
    assert region_name("BE") == "Europe"
    assert region_name("XX") == "XX"
    assert region_code("America") == "BA"
    assert region_code("Korea") == "Ko"


def test_broken_links_are_freed(card):
    image = bytearray(card.raw_image)

    # End link in slot 7 that nothing points to.
    start = header_offset(7)
    image[start] = SlotType.END_LINK
    image[start + 8 : start + 10] = b"\xff\xff"
    # Middle link in slot 9 pointing to itself.
    start = header_offset(9)
    image[start] = SlotType.DELETED_MIDDLE_LINK
    image[start + 8] = 9
    card.load_image(bytes(image))

    assert card.slot_type(7) == SlotType.FORMATTED
    assert card.slot_type(9) == SlotType.FORMATTED
    assert card.free_block_count() == 15


def test_shared_link_slot_belongs_to_first_save(card):
    image = bytearray(card.raw_image)

    for slot, slot_type, link in ((0, 0x51, 2), (1, 0x51, 2), (2, 0x53, 0xFF)):
        start = header_offset(slot)
        image[start] = slot_type
        image[start + 8] = link
        image[start + 9] = 0 if link != 0xFF else 0xFF

    card.load_image(bytes(image))

    assert card.find_save_links(0) == [0, 2]
    assert card.find_save_links(1) == [1]
    assert card.find_parent_slot(2) == 0


def test_link_cycle_is_bounded(card):
    image = bytearray(card.raw_image)

    for slot, slot_type, link in ((0, 0x51, 1), (1, 0x52, 2), (2, 0x52, 1)):
        start = header_offset(slot)
        image[start] = slot_type
        image[start + 8] = link
        image[start + 9] = 0

    card.load_image(bytes(image))

    assert card.find_save_links(0) == [0, 1, 2]


def test_unknown_slot_type_is_corrupted(card):
    image = bytearray(card.raw_image)
    image[header_offset(4)] = 0x7E
    card.load_image(bytes(image))

    assert card.slot_type(4) == SlotType.CORRUPTED
    assert 4 not in {save.slot for save in card.get_saves()}
    assert card.free_block_count() == 14


def test_icon_bytes(full_card):
    icon = full_card.get_icon_bytes(0)
    assert len(icon) == 416
    assert icon == bytes(make_block()[96:512])

    new_icon = bytes([0x22]) * 416
    full_card.set_icon_bytes(0, new_icon)

    assert full_card.get_icon_bytes(0) == new_icon
    assert full_card.get_icon_frames(0)[0] == [2] * 256


def test_icon_palette_and_frames(full_card):
    palette = full_card.get_icon_palette(1)
    frames = full_card.get_icon_frames(1)

    assert palette[0] == (0, 0, 0, 0)
    assert palette[1] == (255, 255, 255, 255)
    assert palette[2] == (255, 0, 0, 255)
    assert len(frames) == 2
    assert frames[0][:4] == [1, 1, 1, 1]
    assert frames[1][:4] == [1, 2, 1, 2]
    assert full_card.get_icon_frames(2) == []


def test_shift_jis_title(full_card):
    title = "セーブ１".encode("shift_jis")
    assert decode_title(make_block(title)) == "セーブ1"


def test_vendor_extension_title():
    # 0x8756 is the NEC row's roman numeral seven.
    title = "ＦＦ".encode("cp932") + b"\x87\x56"
    assert decode_title(make_block(title)) == "FFVII"


def test_invalid_title_falls_back_to_ascii():
    assert decode_title(make_block(b"AB\x81")) == "AB�"


def test_comments(card):
    card.set_comment(2, "hello")

    assert card.get_save(2).comment == "hello"
    assert card.changed


def test_frames(full_card):
    frame = full_card.read_frame(1)
    assert frame == full_card.header(0)

    other = MemoryCard()

    for i in range(1024):
        other.write_frame(i, full_card.read_frame(i), refresh=False)

    other.refresh()
    assert other.raw_image == full_card.raw_image
    assert other.find_save_links(3) == [3, 4, 5]


def test_frame_bounds(card):
    with pytest.raises(IndexError):
        card.read_frame(1024)
    with pytest.raises(ValueError):
        card.write_frame(0, b"short")
    with pytest.raises(IndexError):
        card.get_save(15)


def test_raw_round_trip(full_card):
    full_card.toggle_delete_save(1)
    data = full_card.encode(CardType.RAW)
    reloaded = MemoryCard.from_bytes(data, "card.mcr")

    assert reloaded.raw_image == full_card.raw_image
    assert reloaded.encode(CardType.RAW) == data
    assert not reloaded.changed


def test_save_memory_card_uses_sink(full_card):
    written = {}

    def sink(name, data):
        written[name] = data

    assert full_card.save_memory_card("out.vgs", CardType.VGS, sink)
    assert written["out.vgs"][:4] == b"VgsM"
    assert full_card.card_name == "out.vgs"
    assert not full_card.changed


def test_save_memory_card_failing_sink(full_card):
    def sink(name, data):
        raise OSError("disk full")

    assert not full_card.save_memory_card("out.mcr", CardType.RAW, sink)
    assert full_card.changed


def test_save_memory_card_to_disk(full_card, tmp_path):
    path = tmp_path / "card.gme"

    assert full_card.save_memory_card(str(path), CardType.GME)
    assert MemoryCard.from_file(path).card_type == CardType.GME
