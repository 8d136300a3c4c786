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
"""Errors raised while loading, converting and transferring memory cards."""


class CardError(Exception):
    """Base class for every memory card error."""


class UnsupportedFormat(CardError):
    """The file is not any of the supported memory card containers."""

    def __init__(self, file_name: str = None, reason: str = None):
        self.file_name = file_name
        message = f"{file_name or '<buffer>'}: not a supported memory card file"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class DecryptionFailed(CardError):
    """AES decryption of an encrypted container failed."""


class InvalidImportFormat(CardError):
    """A single save file could not be recognized."""


class InsufficientSpace(CardError):
    """Not enough free slots to store a save."""

    def __init__(self, slot: int, required: int, available: int):
        self.slot = slot
        self.required = required
        self.available = available
        super().__init__(
            f"Save needs {required} free slot(s) from slot {slot}, "
            f"only {available} available"
        )


class UnsupportedOperation(CardError):
    """The requested conversion is not implemented."""


class TransportError(CardError):
    """A frame could not be transferred to or from the device."""

    def __init__(self, frame: int, message: str = None):
        self.frame = frame
        super().__init__(message or f"Transfer of frame {frame} failed")
