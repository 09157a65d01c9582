"""
Containers the codec reads from and writes into

ByteBuffer is a random-access sink/source of 8-bit values with a resettable
read cursor. ChunkedString keeps text in bounded-length segments so that no
single string grows past a host-imposed ceiling.
"""

import struct
from typing import List, Optional, Union

from .errors import CodecFinalizedError


class ByteBuffer:
    """Growable byte buffer with a read cursor"""

    def __init__(self, data: Union[bytes, bytearray, None] = None):
        self._data = bytearray(data) if data is not None else bytearray()
        self._cursor = 0
        self._disposed = False

    @classmethod
    def from_bytes(cls, data: Union[bytes, bytearray, memoryview]) -> 'ByteBuffer':
        return cls(bytes(data))

    def _check(self):
        if self._disposed:
            raise CodecFinalizedError("ByteBuffer")

    @property
    def size(self) -> int:
        self._check()
        return len(self._data)

    @property
    def cursor(self) -> int:
        return self._cursor

    def __len__(self) -> int:
        return self.size

    def has_more(self) -> bool:
        self._check()
        return self._cursor < len(self._data)

    def read_byte(self) -> int:
        self._check()
        if self._cursor >= len(self._data):
            raise IndexError("read past end of buffer")
        b = self._data[self._cursor]
        self._cursor += 1
        return b

    def write_byte(self, n: int) -> None:
        self._check()
        self._data.append(n & 0xFF)

    def read_short(self) -> int:
        """Read an unsigned little-endian 16-bit value"""
        return struct.unpack('<H', self._take(2))[0]

    def read_int(self) -> int:
        """Read an unsigned little-endian 32-bit value"""
        return struct.unpack('<I', self._take(4))[0]

    def write_short(self, n: int) -> None:
        self._check()
        self._data += struct.pack('<H', n & 0xFFFF)

    def write_int(self, n: int) -> None:
        self._check()
        self._data += struct.pack('<I', n & 0xFFFFFFFF)

    def _take(self, count: int) -> bytes:
        self._check()
        end = self._cursor + count
        if end > len(self._data):
            raise IndexError("read past end of buffer")
        chunk = bytes(self._data[self._cursor:end])
        self._cursor = end
        return chunk

    def reset_cursor(self) -> None:
        self._check()
        self._cursor = 0

    def truncate(self, size: int) -> None:
        """Shrink the buffer to `size` bytes; the cursor is clamped"""
        self._check()
        if size < 0:
            raise ValueError("size must be non-negative")
        del self._data[size:]
        self._cursor = min(self._cursor, len(self._data))

    def to_bytes(self) -> bytes:
        self._check()
        return bytes(self._data)

    def dispose(self) -> None:
        self._data = bytearray()
        self._cursor = 0
        self._disposed = True

    @property
    def disposed(self) -> bool:
        return self._disposed

    def __repr__(self) -> str:
        state = "disposed" if self._disposed else f"size={len(self._data)}, cursor={self._cursor}"
        return f"ByteBuffer({state})"


class ChunkedString:
    """
    String container split into segments of at most `chunk_length` characters

    Text is appended at the tail; reading walks whole chunks from a cursor
    that can be rewound with reset_cursor(). A chunk that has been read is
    never extended, so chunks may be shorter than `chunk_length`.
    """

    MAX_CHUNK_LENGTH = 1024

    def __init__(self, chunk_length: Optional[int] = None):
        self.chunk_length = chunk_length if chunk_length is not None else self.MAX_CHUNK_LENGTH
        if self.chunk_length < 1:
            raise ValueError("chunk length has to be at least 1")
        self._chunks: List[str] = []
        self._cursor = 0
        self._length = 0
        self._disposed = False

    @classmethod
    def from_string(cls, text: str, chunk_length: Optional[int] = None) -> 'ChunkedString':
        chunked = cls(chunk_length)
        chunked.append(text)
        return chunked

    def _check(self):
        if self._disposed:
            raise CodecFinalizedError("ChunkedString")

    def append(self, text: str) -> None:
        self._check()
        if not text:
            return
        self._length += len(text)

        # Top up the last chunk before opening new ones, unless it was already read
        last_unread = self._cursor < len(self._chunks)
        if last_unread and len(self._chunks[-1]) < self.chunk_length:
            room = self.chunk_length - len(self._chunks[-1])
            self._chunks[-1] += text[:room]
            text = text[room:]

        for i in range(0, len(text), self.chunk_length):
            self._chunks.append(text[i:i + self.chunk_length])

    def has_more(self) -> bool:
        self._check()
        return self._cursor < len(self._chunks)

    def read_chunk(self) -> str:
        self._check()
        if self._cursor >= len(self._chunks):
            raise IndexError("read past last chunk")
        chunk = self._chunks[self._cursor]
        self._cursor += 1
        return chunk

    def reset_cursor(self) -> None:
        self._check()
        self._cursor = 0

    @property
    def chunk_count(self) -> int:
        self._check()
        return len(self._chunks)

    def __len__(self) -> int:
        self._check()
        return self._length

    def to_string(self) -> str:
        self._check()
        return ''.join(self._chunks)

    def __str__(self) -> str:
        return self.to_string()

    def dispose(self) -> None:
        self._chunks = []
        self._cursor = 0
        self._length = 0
        self._disposed = True

    @property
    def disposed(self) -> bool:
        return self._disposed

    def __repr__(self) -> str:
        if self._disposed:
            return "ChunkedString(disposed)"
        return f"ChunkedString(length={self._length}, chunks={len(self._chunks)})"
