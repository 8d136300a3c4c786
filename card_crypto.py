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
AES and SHA-1 helpers used by the encrypted and signed card containers.

MCX cards are encrypted as a whole with AES-CBC. VMP cards and PSV saves are
signed with a salted SHA-1 digest whose salt is derived from a seed with a
few single-block AES operations. The keys are fixed by the PS3/PSP firmware.
"""
import hashlib
import logging

from Crypto.Cipher import AES

from card_errors import DecryptionFailed

log = logging.getLogger(__name__)

AES_BLOCK_SIZE = 16
ZERO_IV = bytes(AES_BLOCK_SIZE)
SALT_LENGTH = 0x40
DIGEST_LENGTH = 0x14

# Key and IV of MCX (PS Vita) memory card images.
MCX_KEY = bytes.fromhex("81d9cce971a9499b04addc48307f0792")
MCX_IV = bytes.fromhex("13c2e7694bec696d52cf00092ac1f272")

# Key and IV used to salt the VMP/PSV signature.
SAVE_KEY = bytes.fromhex("ab5abc9fc1f49de6a051dbaefa518859")
SAVE_IV = bytes.fromhex("b30ffeedb7dc5eb7133da60d1b6b2cdc")


def aes_cbc_decrypt(data: bytes, key: bytes, iv: bytes) -> bytes:
    """Decrypts the whole buffer with AES-CBC, no padding is removed."""
    try:
        return AES.new(key, AES.MODE_CBC, iv).decrypt(data)
    except ValueError as e:
        raise DecryptionFailed(f"Failed to decrypt data: {e}") from e


def _aes_ecb(data: bytes, key: bytes, encrypt: bool) -> bytes:
    # Each block goes through its own CBC pass with a zero IV, which is ECB.
    if len(data) % AES_BLOCK_SIZE:
        raise ValueError(f"Data length {len(data)} is not a multiple of 16")

    result = bytearray()

    for i in range(0, len(data), AES_BLOCK_SIZE):
        cipher = AES.new(key, AES.MODE_CBC, ZERO_IV)
        block = data[i : i + AES_BLOCK_SIZE]
        result += cipher.encrypt(block) if encrypt else cipher.decrypt(block)

    return bytes(result)


def aes_ecb_encrypt(data: bytes, key: bytes) -> bytes:
    return _aes_ecb(data, key, True)


def aes_ecb_decrypt(data: bytes, key: bytes) -> bytes:
    return _aes_ecb(data, key, False)


def xor_with_iv(dest: bytearray, iv: bytes, offset: int = 0) -> None:
    """XORs 16 bytes of dest, starting at offset, with iv in place."""
    for i in range(AES_BLOCK_SIZE):
        dest[offset + i] ^= iv[i]


def generate_salt_seed(data: bytes) -> bytes:
    return hashlib.sha1(data).digest()


def get_hmac(
    data: bytes, salt_seed: bytes, key: bytes = SAVE_KEY, iv: bytes = SAVE_IV
) -> bytes:
    """
    Computes the salted digest that signs VMP cards and PSV saves.

    Every step consumes the state left by the previous one, the order
    must not change.
    """
    if len(salt_seed) < DIGEST_LENGTH:
        raise ValueError("Salt seed must be at least 20 bytes long")

    buffer = bytearray(salt_seed[:DIGEST_LENGTH])
    salt = bytearray(SALT_LENGTH)

    buffer[:AES_BLOCK_SIZE] = aes_ecb_decrypt(bytes(buffer[:AES_BLOCK_SIZE]), key)
    salt[:AES_BLOCK_SIZE] = buffer[:AES_BLOCK_SIZE]

    buffer[:AES_BLOCK_SIZE] = salt_seed[:AES_BLOCK_SIZE]
    buffer[:AES_BLOCK_SIZE] = aes_ecb_encrypt(bytes(buffer[:AES_BLOCK_SIZE]), key)
    salt[AES_BLOCK_SIZE : 2 * AES_BLOCK_SIZE] = buffer[:AES_BLOCK_SIZE]

    xor_with_iv(salt, iv)

    buffer = bytearray(b"\xff" * DIGEST_LENGTH)
    buffer[:4] = salt_seed[AES_BLOCK_SIZE:DIGEST_LENGTH]
    xor_with_iv(salt, buffer, AES_BLOCK_SIZE)

    # Only the first 0x14 bytes of the salt are kept.
    salt[DIGEST_LENGTH:] = bytes(SALT_LENGTH - DIGEST_LENGTH)

    for i in range(SALT_LENGTH):
        salt[i] ^= 0x36

    first = hashlib.sha1(bytes(salt) + bytes(data)).digest()
    log.debug("Inner digest: %s", first.hex())

    for i in range(SALT_LENGTH):
        salt[i] ^= 0x6A

    return hashlib.sha1(bytes(salt) + first).digest()
