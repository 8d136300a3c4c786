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
Single save export and import.

  Raw            data blocks only, starts with "SC"
  MCS            directory frame followed by the data blocks
  PSV            PS3 virtual save, signed like a VMP card
  Action Replay  54 byte header with the save name, then the data blocks
"""
import logging
import struct
from enum import Enum

from card_codec import HEADER_SIZE, MemoryCard, SlotType
from card_crypto import generate_salt_seed, get_hmac
from card_errors import InvalidImportFormat

log = logging.getLogger(__name__)

PSV_HEADER_SIZE = 0x84
PSV_SALT_SEED_OFFSET = 0x08
PSV_HMAC_OFFSET = 0x1C
PSV_TYPE_OFFSET = 0x3C  # 1 = PS1 save, 2 = PS2 save
PSV_FILE_NAME_OFFSET = 0x64

AR_HEADER_SIZE = 54
AR_NAME_OFFSET = 21
AR_NAME_LENGTH = AR_HEADER_SIZE - AR_NAME_OFFSET

# Header fields shared by all formats: region, product code, identifier.
FILE_NAME_OFFSET = 0x0A
FILE_NAME_LENGTH = 20


class SingleSaveType(Enum):
    RAW = "raw"
    MCS = "mcs"
    PSV = "psv"
    ACTION_REPLAY = "ar"

    @property
    def extension(self) -> str:
        return EXTENSIONS[self]


EXTENSIONS = {
    SingleSaveType.RAW: ".bin",
    SingleSaveType.MCS: ".mcs",
    SingleSaveType.PSV: ".psv",
    SingleSaveType.ACTION_REPLAY: ".mcb",
}


def make_psv(save: bytes) -> bytes:
    """Builds a PSV file from MCS save bytes."""
    psv = bytearray(len(save) + 4)
    psv[1:4] = b"VSP"
    psv[0x38] = 0x14
    psv[PSV_TYPE_OFFSET] = 1
    psv[0x44] = PSV_HEADER_SIZE
    psv[0x49] = 2
    psv[0x5D] = 0x20
    psv[0x60] = 3
    psv[0x61] = 0x90
    psv[PSV_FILE_NAME_OFFSET : PSV_FILE_NAME_OFFSET + 0x20] = save[0x0A:0x2A]
    struct.pack_into("<I", psv, 0x40, len(save) - HEADER_SIZE)
    psv[PSV_HEADER_SIZE:] = save[HEADER_SIZE:]

    salt_seed = generate_salt_seed(bytes(psv))
    psv[PSV_SALT_SEED_OFFSET : PSV_SALT_SEED_OFFSET + 0x14] = salt_seed[:0x14]
    psv[PSV_HMAC_OFFSET : PSV_HMAC_OFFSET + 0x14] = get_hmac(bytes(psv), salt_seed)
    return bytes(psv)


def make_action_replay(save: bytes, name: str) -> bytes:
    header = bytearray(AR_HEADER_SIZE)
    header[0:FILE_NAME_LENGTH] = save[FILE_NAME_OFFSET : FILE_NAME_OFFSET + FILE_NAME_LENGTH]
    raw_name = name.encode("ascii", "replace")[:AR_NAME_LENGTH]
    header[AR_NAME_OFFSET : AR_NAME_OFFSET + len(raw_name)] = raw_name
    return bytes(header) + save[HEADER_SIZE:]


def get_single_save(card: MemoryCard, slot: int, save_type: SingleSaveType) -> bytes:
    """Exports the save at slot in the given format."""
    save = card.get_save_bytes(slot)

    if save_type is SingleSaveType.MCS:
        return save
    elif save_type is SingleSaveType.RAW:
        return save[HEADER_SIZE:]
    elif save_type is SingleSaveType.PSV:
        return make_psv(save)

    info = card.get_save(card.find_parent_slot(slot))
    return make_action_replay(save, info.name)


def suggested_file_name(card: MemoryCard, slot: int, save_type: SingleSaveType) -> str:
    info = card.get_save(card.find_parent_slot(slot))
    return (info.file_name or f"slot{slot}") + save_type.extension


def detect_single_save(data: bytes) -> SingleSaveType:
    if data[:1] == b"Q":
        return SingleSaveType.MCS
    elif data[:2].lower() == b"sc":
        return SingleSaveType.RAW
    elif data[:1] == b"V" or data[:4] == b"\x00VSP":
        if len(data) <= PSV_TYPE_OFFSET or data[PSV_TYPE_OFFSET] != 1:
            raise InvalidImportFormat("Not a valid PS1 PSV save")
        return SingleSaveType.PSV
    elif data[0x36:0x38] == b"SC":
        return SingleSaveType.ACTION_REPLAY

    raise InvalidImportFormat("Not a valid Action Replay save")


def _initial_header(file_name: bytes) -> bytearray:
    header = bytearray(HEADER_SIZE)
    header[0] = SlotType.INITIAL
    header[FILE_NAME_OFFSET : FILE_NAME_OFFSET + len(file_name)] = file_name
    return header


def read_single_save(data: bytes) -> bytes:
    """
    Converts a single save file of any supported format to MCS bytes.

    Raises InvalidImportFormat when the format is not recognized.
    """
    save_type = detect_single_save(data)
    log.info("Detected %s single save", save_type.name)

    if save_type is SingleSaveType.MCS:
        return bytes(data)
    elif save_type is SingleSaveType.RAW:
        return bytes(_initial_header(b"")) + bytes(data)
    elif save_type is SingleSaveType.PSV:
        header = _initial_header(data[PSV_FILE_NAME_OFFSET : PSV_FILE_NAME_OFFSET + FILE_NAME_LENGTH])
        return bytes(header) + bytes(data[PSV_HEADER_SIZE:])

    header = _initial_header(data[0:FILE_NAME_LENGTH])
    return bytes(header) + bytes(data[AR_HEADER_SIZE:])


def import_single_save(card: MemoryCard, data: bytes, slot: int) -> bool:
    """Stores a single save file on the card, starting at slot."""
    try:
        save = read_single_save(data)
    except InvalidImportFormat as e:
        log.error("Failed to open single save: %s", e)
        return False

    return card.set_save_bytes(slot, save)
