# -*- coding: utf8 -*-
# MIT License
#
# Copyright (c) 2023-2024 Ravener
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in all
# copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.
"""
PlayStation memory card image codec.

A raw card is 16 blocks of 8 KiB. Block 0 holds the directory: a "MC" frame
followed by one 128 byte frame per save slot. Blocks 1-15 hold the save data
of slots 0-14.

Directory frame layout:
  00h      Block allocation state (see SlotType)
  04h-06h  Save size in bytes, little endian (first block only)
  08h-09h  Next block in the chain, FFFFh for none
  0Ah-0Bh  Region (BI = Japan, BA = America, BE = Europe)
  0Ch-15h  Product code
  16h-1Dh  Identifier
  7Fh      XOR of bytes 00h-7Eh

The image is the only state of a card. Everything else (slot types, save
descriptors, palettes and icons) is decoded again after each change.
"""
import logging
import math
import unicodedata
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import Callable, Optional

from card_formats import CARD_SIZE, SLOT_COUNT, CardType, detect_format, encode_card
from card_icons import (
    ICON_REGION_SIZE,
    PALETTE_OFFSET,
    decode_icon_frames,
    decode_palette,
    display_palette,
    icon_frame_count,
)

log = logging.getLogger(__name__)

BLOCK_SIZE = 8 * 1024  # 8 KiB per block (16 blocks total)
FRAME_SIZE = 128  # 128 bytes per frame (64 frames per block)
FRAME_COUNT = CARD_SIZE // FRAME_SIZE
HEADER_SIZE = FRAME_SIZE
XOR_OFFSET = HEADER_SIZE - 1
NO_LINK = 0xFF
MAGIC = b"MC"
RESERVED_FRAMES = 20

SIZE_OFFSET = 4
LINK_OFFSET = 8
REGION_OFFSET = 10
PRODUCT_CODE_OFFSET = 12
PRODUCT_CODE_LENGTH = 10
IDENTIFIER_OFFSET = 22
IDENTIFIER_LENGTH = 8
TITLE_OFFSET = 4
TITLE_LENGTH = 64


class SlotType(IntEnum):
    FORMATTED = 0xA0
    INITIAL = 0x51
    MIDDLE_LINK = 0x52
    END_LINK = 0x53
    DELETED_INITIAL = 0xA1
    DELETED_MIDDLE_LINK = 0xA2
    DELETED_END_LINK = 0xA3
    CORRUPTED = 0xFF


INITIAL_TYPES = frozenset((SlotType.INITIAL, SlotType.DELETED_INITIAL))
LINK_TYPES = frozenset(
    (
        SlotType.MIDDLE_LINK,
        SlotType.END_LINK,
        SlotType.DELETED_MIDDLE_LINK,
        SlotType.DELETED_END_LINK,
    )
)
LISTED_TYPES = INITIAL_TYPES | {SlotType.FORMATTED}

TOGGLED_TYPES = {
    SlotType.INITIAL: SlotType.DELETED_INITIAL,
    SlotType.MIDDLE_LINK: SlotType.DELETED_MIDDLE_LINK,
    SlotType.END_LINK: SlotType.DELETED_END_LINK,
    SlotType.DELETED_INITIAL: SlotType.INITIAL,
    SlotType.DELETED_MIDDLE_LINK: SlotType.MIDDLE_LINK,
    SlotType.DELETED_END_LINK: SlotType.END_LINK,
}

REGIONS = {"BI": "Japan", "BA": "America", "BE": "Europe"}
REGION_CODES = {name: code for code, name in REGIONS.items()}


def slot_type_of(tag: int) -> SlotType:
    # Never written frames are blank, treat them as free.
    if tag == 0x00:
        return SlotType.FORMATTED

    try:
        return SlotType(tag)
    except ValueError:
        return SlotType.CORRUPTED


def region_name(code: str) -> str:
    return REGIONS.get(code, code)


def region_code(name: str) -> str:
    if name in REGION_CODES:
        return REGION_CODES[name]

    return name.ljust(2, " ")[:2]


def header_checksum(header: bytes) -> int:
    checksum = 0

    for byte in header[:XOR_OFFSET]:
        checksum ^= byte

    return checksum


def decode_title(block: bytes) -> str:
    raw = block[TITLE_OFFSET : TITLE_OFFSET + TITLE_LENGTH]
    end = TITLE_LENGTH

    # Titles end at the first aligned double NUL.
    for i in range(0, TITLE_LENGTH, 2):
        if raw[i] == 0 and raw[i + 1] == 0:
            end = i
            break

    raw = raw[:end].rstrip(b"\x00")

    try:
        return unicodedata.normalize("NFKC", raw.decode("cp932"))
    except UnicodeDecodeError:
        log.debug("Title is not valid Shift-JIS (cp932), falling back to ASCII")
        return raw.decode("ascii", "replace")


def _field(header: bytes, offset: int, length: int) -> str:
    return header[offset : offset + length].decode("latin-1").replace("\x00", "")


# A container to store a decoded save slot.
@dataclass
class SaveInfo:
    """
    Decoded view of one save slot.

    ``size`` is the header's byte size divided by 1024, which is what the
    card listing reports as the save's size. ``block_count`` is the number
    of 8 KiB blocks the save occupies on the card.
    """

    slot: int
    slot_type: SlotType
    name: str = ""
    product_code: str = ""
    identifier: str = ""
    region: str = ""
    region_raw: str = ""
    size: int = 0  # KiB
    block_count: int = 0
    icon_frame_count: int = 0
    comment: str = ""

    @property
    def file_name(self) -> str:
        return f"{self.region_raw}{self.product_code}{self.identifier}"

    @property
    def deleted(self) -> bool:
        return self.slot_type == SlotType.DELETED_INITIAL


class MemoryCard:
    """A 128 KiB memory card image and its decoded slot table."""

    def __init__(self):
        self._image = bytearray(CARD_SIZE)
        self.card_type = CardType.RAW
        self.card_name = None
        self.comments = [""] * SLOT_COUNT
        self.changed = False

        self._slot_types = [SlotType.FORMATTED] * SLOT_COUNT
        self._owners = [None] * SLOT_COUNT
        self._saves = []
        self._palettes = []
        self._icons = []
        self.refresh()

    @classmethod
    def from_bytes(cls, data: bytes, file_name: str = None) -> "MemoryCard":
        card = cls()
        card.load(data, file_name)
        return card

    @classmethod
    def from_file(cls, path) -> "MemoryCard":
        path = Path(path)
        return cls.from_bytes(path.read_bytes(), path.name)

    def load(self, data: bytes, file_name: str = None) -> None:
        """
        Replaces the card with the contents of a memory card file.

        Raises UnsupportedFormat, in which case the card is left untouched.
        An MCX image that fails to decrypt is reported as UnsupportedFormat
        too, since decryption is only attempted as the last detection step.
        """
        detection = detect_format(data, file_name)

        self._image = bytearray(detection.image)
        self.card_type = detection.card_type
        self.card_name = file_name
        self.comments = list(detection.comments)
        self.changed = False
        self.refresh()

    def load_image(self, image: bytes) -> None:
        """Replaces the card with a bare 128 KiB image."""
        if len(image) != CARD_SIZE:
            raise ValueError(f"Raw image must be {CARD_SIZE} bytes, got {len(image)}")

        self._image = bytearray(image)
        self.card_type = CardType.RAW
        self.comments = [""] * SLOT_COUNT
        self.changed = False
        self.refresh()

    def format_card(self) -> None:
        """Erases the whole card and writes an empty directory."""
        image = bytearray(CARD_SIZE)
        image[0:2] = MAGIC
        image[XOR_OFFSET] = header_checksum(image[:HEADER_SIZE])

        for frame in range(1, SLOT_COUNT + 1):
            start = frame * FRAME_SIZE
            image[start] = SlotType.FORMATTED
            image[start + LINK_OFFSET : start + LINK_OFFSET + 2] = b"\xff\xff"

        # Reserved frames for broken sector replacement.
        for frame in range(SLOT_COUNT + 1, SLOT_COUNT + 1 + RESERVED_FRAMES):
            start = frame * FRAME_SIZE
            image[start : start + 4] = b"\xff" * 4
            image[start + LINK_OFFSET : start + LINK_OFFSET + 2] = b"\xff\xff"
            image[start + XOR_OFFSET] = header_checksum(image[start : start + HEADER_SIZE])

        unused = (SLOT_COUNT + 1 + RESERVED_FRAMES) * FRAME_SIZE
        image[unused : BLOCK_SIZE - FRAME_SIZE] = b"\xff" * (
            BLOCK_SIZE - FRAME_SIZE - unused
        )

        self._image = image
        self.comments = [""] * SLOT_COUNT
        self._commit()

    # Raw image access

    @property
    def raw_image(self) -> bytes:
        return bytes(self._image)

    def header(self, slot: int) -> bytes:
        start = self._header_offset(slot)
        return bytes(self._image[start : start + HEADER_SIZE])

    def block(self, slot: int) -> bytes:
        start = self._block_offset(slot)
        return bytes(self._image[start : start + BLOCK_SIZE])

    def read_frame(self, frame: int) -> bytes:
        if not 0 <= frame < FRAME_COUNT:
            raise IndexError(f"Frame {frame} out of range")

        return bytes(self._image[frame * FRAME_SIZE : (frame + 1) * FRAME_SIZE])

    def write_frame(self, frame: int, data: bytes, refresh: bool = True) -> None:
        if not 0 <= frame < FRAME_COUNT:
            raise IndexError(f"Frame {frame} out of range")
        if len(data) != FRAME_SIZE:
            raise ValueError(f"Frame must be {FRAME_SIZE} bytes, got {len(data)}")

        self._image[frame * FRAME_SIZE : (frame + 1) * FRAME_SIZE] = data

        if refresh:
            self.refresh()

    def _check_slot(self, slot: int) -> None:
        if not 0 <= slot < SLOT_COUNT:
            raise IndexError(f"Slot {slot} out of range")

    def _header_offset(self, slot: int) -> int:
        self._check_slot(slot)
        return HEADER_SIZE + slot * HEADER_SIZE

    def _block_offset(self, slot: int) -> int:
        self._check_slot(slot)
        return BLOCK_SIZE + slot * BLOCK_SIZE

    # Decoding

    def refresh(self) -> None:
        """Decodes the whole slot table from the image."""
        self._update_checksums()
        self._load_slot_types()
        self._heal_broken_links()
        self._load_saves()
        self._load_icons()

    def _update_checksums(self) -> None:
        for slot in range(SLOT_COUNT):
            start = self._header_offset(slot)
            self._image[start + XOR_OFFSET] = header_checksum(
                self._image[start : start + HEADER_SIZE]
            )

    def _load_slot_types(self) -> None:
        self._slot_types = [
            slot_type_of(self._image[self._header_offset(slot)])
            for slot in range(SLOT_COUNT)
        ]

    def _link(self, slot: int) -> int:
        return self._image[self._header_offset(slot) + LINK_OFFSET]

    def _walk_chain(self, slot: int, owner: Optional[int]) -> list[int]:
        links = [slot]
        current = slot

        for _ in range(SLOT_COUNT):
            next_slot = self._link(current)

            if next_slot == NO_LINK or next_slot >= SLOT_COUNT:
                break
            if self._slot_types[next_slot] not in LINK_TYPES:
                break
            if next_slot in links or self._owners[next_slot] != owner:
                break

            links.append(next_slot)
            current = next_slot

        return links

    def _heal_broken_links(self) -> None:
        self._owners = [None] * SLOT_COUNT

        for slot in range(SLOT_COUNT):
            if self._slot_types[slot] in INITIAL_TYPES:
                for link in self._walk_chain(slot, None):
                    self._owners[link] = slot

        for slot in range(SLOT_COUNT):
            if self._slot_types[slot] in LINK_TYPES and self._owners[slot] is None:
                log.warning(
                    "Slot %d (%s) is not linked to any save, marking it free",
                    slot,
                    self._slot_types[slot].name,
                )
                self._slot_types[slot] = SlotType.FORMATTED

    def _load_saves(self) -> None:
        saves = []

        for slot in range(SLOT_COUNT):
            header = self.header(slot)
            block = self.block(slot)
            size = int.from_bytes(header[SIZE_OFFSET : SIZE_OFFSET + 3], "little")
            region_raw = _field(header, REGION_OFFSET, 2)
            saves.append(
                SaveInfo(
                    slot=slot,
                    slot_type=self._slot_types[slot],
                    name=decode_title(block),
                    product_code=_field(header, PRODUCT_CODE_OFFSET, PRODUCT_CODE_LENGTH),
                    identifier=_field(header, IDENTIFIER_OFFSET, IDENTIFIER_LENGTH),
                    region=region_name(region_raw),
                    region_raw=region_raw,
                    size=size // 1024,
                    block_count=math.ceil(size / BLOCK_SIZE),
                    icon_frame_count=icon_frame_count(block),
                    comment=self.comments[slot],
                )
            )

        self._saves = saves

    def _load_icons(self) -> None:
        self._palettes = []
        self._icons = []

        for slot in range(SLOT_COUNT):
            block = self.block(slot)
            self._palettes.append(decode_palette(block))

            if self._slot_types[slot] in INITIAL_TYPES:
                self._icons.append(decode_icon_frames(block, icon_frame_count(block)))
            else:
                self._icons.append([])

    # Queries

    def slot_type(self, slot: int) -> SlotType:
        self._check_slot(slot)
        return self._slot_types[slot]

    def get_save(self, slot: int) -> SaveInfo:
        self._check_slot(slot)
        return self._saves[slot]

    def get_saves(self) -> list[SaveInfo]:
        """Returns the saves and free slots, linked blocks are left out."""
        return [save for save in self._saves if save.slot_type in LISTED_TYPES]

    def free_block_count(self) -> int:
        return self._slot_types.count(SlotType.FORMATTED)

    def find_save_links(self, slot: int) -> list[int]:
        """Returns the slots of the chain starting at slot, in order."""
        self._check_slot(slot)
        return self._walk_chain(slot, self._owners[slot])

    def find_parent_slot(self, slot: int) -> int:
        """
        Returns the first slot of the save the given slot belongs to.

        Returns slot itself for first blocks, free slots and orphans.
        """
        self._check_slot(slot)

        if self._slot_types[slot] not in LINK_TYPES:
            return slot

        for candidate in range(slot - 1, -1, -1):
            slot_type = self._slot_types[candidate]

            if slot_type in INITIAL_TYPES:
                if slot in self.find_save_links(candidate):
                    return candidate
                break
            if slot_type not in LINK_TYPES:
                break

        # Chains are not always laid out in order.
        owner = self._owners[slot]
        return slot if owner is None else owner

    def get_icon_palette(self, slot: int) -> list[tuple]:
        self._check_slot(slot)
        return display_palette(self._palettes[slot])

    def get_icon_frames(self, slot: int) -> list[list[int]]:
        self._check_slot(slot)
        return self._icons[slot]

    # Mutations

    def _set_slot_type(self, slot: int, slot_type: SlotType) -> None:
        self._image[self._header_offset(slot)] = slot_type

    def _set_link(self, slot: int, link: Optional[int]) -> None:
        start = self._header_offset(slot) + LINK_OFFSET

        if link is None:
            self._image[start : start + 2] = bytes((NO_LINK, NO_LINK))
        else:
            self._image[start : start + 2] = bytes((link, 0x00))

    def _commit(self) -> None:
        self.refresh()
        self.changed = True

    def toggle_delete_save(self, slot: int) -> None:
        """Deletes the save at slot, or restores it when already deleted."""
        slot = self.find_parent_slot(slot)

        for link in self.find_save_links(slot):
            slot_type = self._slot_types[link]

            if slot_type in TOGGLED_TYPES:
                self._set_slot_type(link, TOGGLED_TYPES[slot_type])

        self._commit()

    def format_save(self, slot: int) -> None:
        """Erases every block of the save at slot."""
        slot = self.find_parent_slot(slot)

        for link in self.find_save_links(slot):
            header = self._header_offset(link)
            block = self._block_offset(link)
            self._image[header : header + HEADER_SIZE] = bytes(HEADER_SIZE)
            self._image[block : block + BLOCK_SIZE] = bytes(BLOCK_SIZE)
            self._set_slot_type(link, SlotType.FORMATTED)
            self._set_link(link, None)

        self._commit()

    def get_save_bytes(self, slot: int) -> bytes:
        """Returns the header of the save followed by all its data blocks."""
        slot = self.find_parent_slot(slot)
        data = bytearray(self.header(slot))

        for link in self.find_save_links(slot):
            data += self.block(link)

        return bytes(data)

    def find_free_slots(self, slot: int, count: int) -> list[int]:
        self._check_slot(slot)
        free_slots = []

        for i in range(slot, SLOT_COUNT):
            if len(free_slots) == count:
                break
            if self._slot_types[i] == SlotType.FORMATTED:
                free_slots.append(i)

        return free_slots

    def set_save_bytes(self, slot: int, data: bytes) -> bool:
        """
        Stores a save (header followed by data blocks) in free slots,
        starting the search at slot.

        Returns False without touching the card when there is not enough
        free space.
        """
        required = math.ceil((len(data) - HEADER_SIZE) / BLOCK_SIZE)

        if required < 1:
            log.error("Save of %d bytes holds no data block", len(data))
            return False

        free_slots = self.find_free_slots(slot, required)

        if len(free_slots) < required:
            log.error(
                "Not enough free blocks: save needs %d, %d available from slot %d",
                required,
                len(free_slots),
                slot,
            )
            return False

        for i, free_slot in enumerate(free_slots):
            header = self._header_offset(free_slot)
            block = self._block_offset(free_slot)

            if i == 0:
                self._image[header : header + HEADER_SIZE] = data[:HEADER_SIZE]
                size = len(data) - HEADER_SIZE
                self._image[header + SIZE_OFFSET : header + SIZE_OFFSET + 3] = (
                    size.to_bytes(3, "little")
                )
                slot_type = SlotType.INITIAL
            else:
                self._image[header : header + HEADER_SIZE] = bytes(HEADER_SIZE)
                slot_type = (
                    SlotType.END_LINK if i == required - 1 else SlotType.MIDDLE_LINK
                )

            chunk = data[HEADER_SIZE + i * BLOCK_SIZE : HEADER_SIZE + (i + 1) * BLOCK_SIZE]
            self._image[block : block + BLOCK_SIZE] = bytes(chunk).ljust(BLOCK_SIZE, b"\x00")
            self._set_slot_type(free_slot, slot_type)
            self._set_link(free_slot, free_slots[i + 1] if i < required - 1 else None)

        self._commit()
        return True

    def set_header_data(
        self, slot: int, product_code: str, identifier: str, region: str
    ) -> None:
        start = self._header_offset(slot)
        fields = (
            (REGION_OFFSET, region_code(region), 2),
            (PRODUCT_CODE_OFFSET, product_code, PRODUCT_CODE_LENGTH),
            (IDENTIFIER_OFFSET, identifier, IDENTIFIER_LENGTH),
        )

        for offset, value, length in fields:
            raw = value.encode("ascii", "replace")[:length].ljust(length, b"\x00")
            self._image[start + offset : start + offset + length] = raw

        self._commit()

    def get_icon_bytes(self, slot: int) -> bytes:
        start = self._block_offset(slot) + PALETTE_OFFSET
        return bytes(self._image[start : start + ICON_REGION_SIZE])

    def set_icon_bytes(self, slot: int, data: bytes) -> None:
        start = self._block_offset(slot) + PALETTE_OFFSET
        data = bytes(data[:ICON_REGION_SIZE])
        self._image[start : start + len(data)] = data
        self._load_icons()
        self.changed = True

    def set_comment(self, slot: int, comment: str) -> None:
        self._check_slot(slot)
        self.comments[slot] = comment
        self._saves[slot].comment = comment
        self.changed = True

    # Encoding

    def encode(self, card_type: CardType = None) -> bytes:
        return encode_card(self.raw_image, card_type or self.card_type, self.comments)

    def save_memory_card(
        self,
        file_name: str,
        card_type: CardType = None,
        sink: Callable[[str, bytes], None] = None,
    ) -> bool:
        """
        Encodes the card and hands it to sink, which writes to disk by
        default. Returns False when the sink fails.
        """
        data = self.encode(card_type)

        if sink is None:
            sink = write_file

        try:
            sink(file_name, data)
        except OSError as e:
            log.error("Failed to save memory card %s: %s", file_name, e)
            return False

        self.card_name = file_name
        self.changed = False
        return True


def write_file(file_name: str, data: bytes) -> None:
    Path(file_name).write_bytes(data)
