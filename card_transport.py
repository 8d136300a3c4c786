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
Frame level transfer between a MemoryCard and a card reader device.

Devices (MemCARDuino, Unirom, DexDrive...) only need to move single 128 byte
frames, the protocol they speak is their own business. Frames are always
transferred in ascending order, 1024 frames per card.
"""
import logging
from typing import Callable, Optional, Protocol

from card_codec import FRAME_COUNT, FRAME_SIZE, MemoryCard
from card_errors import TransportError

log = logging.getLogger(__name__)

Progress = Callable[[int, int], None]


class FrameDevice(Protocol):
    def start(self) -> None:
        ...

    def stop(self) -> None:
        ...

    def read_frame(self, frame: int) -> Optional[bytes]:
        """Returns the 128 bytes of a frame, or None on failure."""

    def write_frame(self, frame: int, data: bytes) -> bool:
        """Returns False when the device rejected the frame."""


def read_card(
    device: FrameDevice, card: MemoryCard = None, progress: Progress = None
) -> MemoryCard:
    """
    Reads a whole card from the device.

    The card is only replaced once every frame has arrived, a failed frame
    raises TransportError and leaves it as it was.
    """
    if card is None:
        card = MemoryCard()

    image = bytearray()
    device.start()

    try:
        for frame in range(FRAME_COUNT):
            try:
                data = device.read_frame(frame)
            except OSError as e:
                raise TransportError(frame, f"Reading frame {frame} failed: {e}") from e

            if data is None or len(data) != FRAME_SIZE:
                raise TransportError(frame, f"Incomplete read of frame {frame}")

            image += data

            if progress:
                progress(frame + 1, FRAME_COUNT)
    finally:
        device.stop()

    log.info("Read %d frames from device", FRAME_COUNT)
    card.load_image(bytes(image))
    return card


def write_card(device: FrameDevice, card: MemoryCard, progress: Progress = None) -> None:
    """Writes every frame of the card to the device."""
    device.start()

    try:
        for frame in range(FRAME_COUNT):
            try:
                ok = device.write_frame(frame, card.read_frame(frame))
            except OSError as e:
                raise TransportError(frame, f"Writing frame {frame} failed: {e}") from e

            if not ok:
                raise TransportError(frame)

            if progress:
                progress(frame + 1, FRAME_COUNT)
    finally:
        device.stop()

    log.info("Wrote %d frames to device", FRAME_COUNT)
