import pytest

from card_codec import BLOCK_SIZE, HEADER_SIZE, MemoryCard, header_checksum


def fix_checksum(header: bytearray) -> bytearray:
    header[127] = header_checksum(header)
    return header


def make_block(title: bytes = b"TEST SAVE", frames: int = 1, fill: int = 0) -> bytearray:
    block = bytearray([fill]) * BLOCK_SIZE
    block[0:2] = b"SC"
    block[2] = {0: 0x00, 1: 0x11, 2: 0x12, 3: 0x13}[frames]
    block[3] = 1
    block[4:68] = bytes(64)
    block[4 : 4 + len(title)] = title
    # Palette: index 0 black, index 1 white, index 2 pure red.
    block[96:128] = bytes(32)
    block[98:100] = (0xFFFF).to_bytes(2, "little")
    block[100:102] = (0x801F).to_bytes(2, "little")

    for frame in range(3):
        start = 128 + frame * 128
        # Left pixel index 1, right pixel index frame + 1.
        block[start : start + 128] = bytes([0x01 | ((frame + 1) << 4)]) * 128

    return block


def make_save(
    blocks: int = 1,
    product_code: bytes = b"SLUS-00001",
    identifier: bytes = b"GAME0001",
    region: bytes = b"BA",
    title: bytes = b"TEST SAVE",
    frames: int = 1,
) -> bytes:
    """MCS bytes as a card would produce them for a save stored alone."""
    header = bytearray(HEADER_SIZE)
    header[0] = 0x51
    header[4:7] = (blocks * BLOCK_SIZE).to_bytes(3, "little")
    header[8:10] = b"\xff\xff"
    header[10:12] = region
    header[12 : 12 + len(product_code)] = product_code
    header[22 : 22 + len(identifier)] = identifier
    fix_checksum(header)

    data = make_block(title, frames)

    for i in range(1, blocks):
        data += bytes([i]) * BLOCK_SIZE

    return bytes(header) + bytes(data)


@pytest.fixture
def card():
    card = MemoryCard()
    card.format_card()
    return card


@pytest.fixture
def full_card():
    """A card with saves of 1, 2 and 3 blocks in slots 0, 1-2 and 3-5."""
    card = MemoryCard()
    card.format_card()
    assert card.set_save_bytes(0, make_save(1, identifier=b"ONE"))
    assert card.set_save_bytes(0, make_save(2, identifier=b"TWO", frames=2))
    assert card.set_save_bytes(0, make_save(3, identifier=b"THREE", frames=3))
    return card


class FakeDevice:
    def __init__(self, image: bytes = None, fail_at: int = None):
        self.image = bytearray(image or bytes(128 * 1024))
        self.fail_at = fail_at
        self.started = False
        self.stopped = False
        self.frames = []

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def read_frame(self, frame):
        if frame == self.fail_at:
            return self.image[frame * 128 : frame * 128 + 64]
        self.frames.append(frame)
        return bytes(self.image[frame * 128 : (frame + 1) * 128])

    def write_frame(self, frame, data):
        if frame == self.fail_at:
            return False
        self.frames.append(frame)
        self.image[frame * 128 : (frame + 1) * 128] = data
        return True


@pytest.fixture
def device_factory():
    return FakeDevice
