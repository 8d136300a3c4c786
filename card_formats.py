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
Memory card container formats.

Every container wraps the same 128 KiB raw image:
  Raw  (.mcr/.mcd/.bin) image only
  GME  (.gme)  DexDrive, 3904 byte header with per-slot comments
  VGS  (.vgs)  Connectix Virtual Game Station, 64 byte header
  VMP  (.vmp)  PSP/PS3 virtual memory card, signed 128 byte header
  MCX  (.mcx)  PS Vita, AES-CBC encrypted
"""
import logging
from dataclasses import dataclass, field
from enum import Enum

from card_crypto import (
    MCX_IV,
    MCX_KEY,
    aes_cbc_decrypt,
    generate_salt_seed,
    get_hmac,
)
from card_errors import DecryptionFailed, UnsupportedFormat, UnsupportedOperation

log = logging.getLogger(__name__)

CARD_SIZE = 128 * 1024  # 128 KiB raw memory card file size.
SLOT_COUNT = 15
COMMENT_SIZE = 256

GME_SIGNATURE = b"123-456-STD"
GME_HEADER_SIZE = 3904
GME_COMMENT_OFFSET = 64
GME_FILE_SIZE = GME_HEADER_SIZE + CARD_SIZE

VGS_SIGNATURE = b"VgsM"
VGS_HEADER_SIZE = 64

VMP_SIGNATURE = b"PMV"
VMP_HEADER_SIZE = 0x80
VMP_FILE_SIZE = VMP_HEADER_SIZE + CARD_SIZE
VMP_SALT_SEED_OFFSET = 0x0C
VMP_HMAC_OFFSET = 0x20

MCX_HEADER_SIZE = 0x80
MCX_ENCRYPTED_SIZE = 0x200A0

RAW_SIGNATURE = b"MC"

# Bytes ignored when matching a signature at the start of a file.
SENTINEL_BYTES = frozenset((0x00, 0x01, 0x3F, 0x80))
SIGNATURE_WINDOW = 11


class CardType(Enum):
    RAW = "raw"
    GME = "gme"
    VGS = "vgs"
    VMP = "vmp"
    MCX = "mcx"

    @property
    def extension(self) -> str:
        return EXTENSIONS[self]


EXTENSIONS = {
    CardType.RAW: ".mcr",
    CardType.GME: ".gme",
    CardType.VGS: ".vgs",
    CardType.VMP: ".vmp",
    CardType.MCX: ".mcx",
}


@dataclass
class Detection:
    card_type: CardType
    offset: int
    image: bytes
    comments: list[str] = field(default_factory=lambda: [""] * SLOT_COUNT)


def signature_window(data: bytes) -> bytes:
    return bytes(b for b in data[:SIGNATURE_WINDOW] if b not in SENTINEL_BYTES)


def extract_image(data: bytes, offset: int) -> bytes:
    """Returns exactly CARD_SIZE bytes starting at offset, zero padded."""
    image = bytes(data[offset : offset + CARD_SIZE])
    return image.ljust(CARD_SIZE, b"\x00")


def decrypt_mcx(data: bytes) -> bytes:
    if len(data) < MCX_ENCRYPTED_SIZE:
        raise DecryptionFailed(
            f"MCX data must be at least {MCX_ENCRYPTED_SIZE} bytes, got {len(data)}"
        )

    return aes_cbc_decrypt(bytes(data[:MCX_ENCRYPTED_SIZE]), MCX_KEY, MCX_IV)


def read_gme_comments(data: bytes) -> list[str]:
    comments = []

    for i in range(SLOT_COUNT):
        start = GME_COMMENT_OFFSET + COMMENT_SIZE * i
        raw = data[start : start + COMMENT_SIZE]
        comments.append(raw.decode("latin-1").replace("\x00", ""))

    return comments


def detect_format(data: bytes, file_name: str = None) -> Detection:
    """
    Classifies a memory card file and extracts its raw image.

    Raises UnsupportedFormat when the data matches none of the containers.
    """
    window = signature_window(data)

    if window.startswith(RAW_SIGNATURE):
        card_type, offset = CardType.RAW, 0
    elif window.startswith(GME_SIGNATURE):
        card_type, offset = CardType.GME, GME_HEADER_SIZE
    elif window.startswith(VGS_SIGNATURE):
        card_type, offset = CardType.VGS, VGS_HEADER_SIZE
    elif window.startswith(VMP_SIGNATURE):
        card_type, offset = CardType.VMP, VMP_HEADER_SIZE
    else:
        try:
            decrypted = decrypt_mcx(data)
        except DecryptionFailed as e:
            log.debug("%s is not an MCX card: %s", file_name, e)
            decrypted = None

        if decrypted is not None and decrypted[0x80:0x82] == RAW_SIGNATURE:
            log.info("Detected MCX memory card %s", file_name)
            return Detection(
                CardType.MCX, MCX_HEADER_SIZE, extract_image(decrypted, MCX_HEADER_SIZE)
            )

        if (
            len(data) == GME_FILE_SIZE
            and data[GME_HEADER_SIZE : GME_HEADER_SIZE + 2] == RAW_SIGNATURE
        ):
            card_type, offset = CardType.GME, GME_HEADER_SIZE
        else:
            raise UnsupportedFormat(file_name, "no known signature")

    log.info("Detected %s memory card %s", card_type.name, file_name)
    detection = Detection(card_type, offset, extract_image(data, offset))

    if card_type is CardType.GME:
        detection.comments = read_gme_comments(data)

    return detection


def make_gme_header(image: bytes, comments: list[str]) -> bytearray:
    header = bytearray(GME_HEADER_SIZE)
    header[0 : len(GME_SIGNATURE)] = GME_SIGNATURE
    header[18] = 0x01
    header[20] = 0x01
    header[21] = 0x4D

    for i in range(SLOT_COUNT):
        frame = 128 + i * 128
        header[22 + i] = image[frame]
        header[38 + i] = image[frame + 8]

        comment = comments[i] if i < len(comments) else ""

        if comment:
            # Keep room for the NUL terminator.
            raw = comment.encode("latin-1", "replace")[: COMMENT_SIZE - 1]
            start = GME_COMMENT_OFFSET + COMMENT_SIZE * i
            header[start : start + len(raw)] = raw

    return header


def make_gme(image: bytes, comments: list[str]) -> bytes:
    return bytes(make_gme_header(image, comments)) + bytes(image)


def make_vgs(image: bytes) -> bytes:
    header = bytearray(VGS_HEADER_SIZE)
    header[0 : len(VGS_SIGNATURE)] = VGS_SIGNATURE
    header[4] = 0x01
    header[8] = 0x01
    header[12] = 0x01
    header[17] = 0x02
    return bytes(header) + bytes(image)


def make_vmp(image: bytes) -> bytes:
    vmp = bytearray(VMP_FILE_SIZE)
    vmp[1:4] = VMP_SIGNATURE
    vmp[4] = VMP_HEADER_SIZE
    vmp[VMP_HEADER_SIZE:] = image

    salt_seed = generate_salt_seed(bytes(vmp))
    vmp[VMP_SALT_SEED_OFFSET : VMP_SALT_SEED_OFFSET + 0x14] = salt_seed[:0x14]
    vmp[VMP_HMAC_OFFSET : VMP_HMAC_OFFSET + 0x14] = get_hmac(bytes(vmp), salt_seed)
    return bytes(vmp)


def make_mcx(image: bytes) -> bytes:
    raise UnsupportedOperation("Writing MCX memory cards is not supported")


def encode_card(image: bytes, card_type: CardType, comments: list[str] = None) -> bytes:
    """Wraps a raw image into the given container."""
    if len(image) != CARD_SIZE:
        raise ValueError(f"Raw image must be {CARD_SIZE} bytes, got {len(image)}")

    if card_type is CardType.GME:
        return make_gme(image, comments or [])
    elif card_type is CardType.VGS:
        return make_vgs(image)
    elif card_type is CardType.VMP:
        return make_vmp(image)
    elif card_type is CardType.MCX:
        return make_mcx(image)

    return bytes(image)
