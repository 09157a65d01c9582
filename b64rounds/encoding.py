"""
Streaming RFC 4648 Base64 encoder and decoder

Both codec objects are fed incrementally and finalized once with
into_data(), which hands the destination container to the caller and
invalidates the codec. Bulk feeds from a ByteBuffer or ChunkedString are
split into bounded rounds (see rounds.RoundTask) so that no single tick
does more than a fixed amount of work.
"""

import logging
from collections import deque
from typing import Callable, Deque, Optional, Tuple, Union

from .buffers import ByteBuffer, ChunkedString
from .errors import CodecBusyError, CodecFinalizedError, MalformedLengthError
from .rounds import RoundTask, Scheduler

logger = logging.getLogger(__name__)

_base64 = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"
_pad = '='


def _build_lookup() -> tuple:
    # Unmapped codes (including '=' and whitespace) decode as 0, like 'A'
    table = [0] * 256
    for i, c in enumerate(_base64):
        table[ord(c)] = i
    return tuple(table)


b64lookup = _build_lookup()

OnDone = Optional[Callable[[RoundTask], None]]


def _lookup(c: str) -> int:
    code = ord(c)
    return b64lookup[code] if code < 256 else 0


class _Codec:
    """
    Lifecycle shared by encoder and decoder

    At most one round task runs against a codec at a time. Scheduled bulk
    calls made while one is running wait in FIFO order and are started from
    the finish of the task ahead of them, so output follows call order.
    """

    def __init__(self):
        self._finalized = False
        self._active: Optional[RoundTask] = None
        self._waiting: Deque[Tuple[RoundTask, Scheduler]] = deque()

    def _check_open(self):
        if self._finalized:
            raise CodecFinalizedError(type(self).__name__)

    def _check_idle(self):
        if self.in_flight:
            raise CodecBusyError(type(self).__name__, self.in_flight)

    @property
    def finalized(self) -> bool:
        return self._finalized

    @property
    def in_flight(self) -> int:
        """Running plus waiting round tasks"""
        return (self._active is not None) + len(self._waiting)

    def _task(self, step, limit: int, on_finish, on_done: OnDone, name: str) -> RoundTask:
        def claim():
            if self._active is not None:
                raise CodecBusyError(type(self).__name__, self.in_flight)
            self._active = task

        def finish():
            on_finish()
            self._release()

        task = RoundTask(step, limit, on_finish=finish, on_done=on_done, name=name,
                         on_start=claim, on_error=lambda exc: self._release())
        return task

    def _release(self) -> None:
        self._active = None
        if self._waiting:
            task, scheduler = self._waiting.popleft()
            task.start(scheduler)

    def _launch(self, task: RoundTask, scheduler: Optional[Scheduler]) -> RoundTask:
        if scheduler is None:
            return task.run()
        if self._active is not None:
            logger.debug("%s queued behind %d task(s)", task.name, self.in_flight)
            self._waiting.append((task, scheduler))
            return task
        return task.start(scheduler)


class Base64Encoder(_Codec):
    """
    Incremental Base64 encoder

    Raw bytes are packed three at a time into a 24-bit value and emitted as
    four characters. Emitted characters collect in a short text buffer that
    is flushed into the destination ChunkedString whenever it fills up.

    Args:
        bytes_per_round: Input bytes processed per round by write()/consume()
        text_buffer_size: Characters held before flushing to the destination
        chunk_length: Segment length of the destination ChunkedString
    """

    BYTES_PER_ROUND = 1000
    TEXT_BUFFER_SIZE = 32

    def __init__(self, bytes_per_round: Optional[int] = None,
                 text_buffer_size: Optional[int] = None,
                 chunk_length: Optional[int] = None):
        super().__init__()
        self.bytes_per_round = bytes_per_round if bytes_per_round is not None else self.BYTES_PER_ROUND
        self.text_buffer_size = text_buffer_size if text_buffer_size is not None else self.TEXT_BUFFER_SIZE
        if self.bytes_per_round < 1:
            raise ValueError("bytes per round has to be at least 1")
        if self.text_buffer_size < 1:
            raise ValueError("text buffer size has to be at least 1")

        self._buf = 0
        self._pos = 0
        self._text = []
        self._dst = ChunkedString(chunk_length)

    @property
    def pending_bytes(self) -> int:
        return self._pos

    def _push_char(self, c: str) -> None:
        self._text.append(c)
        if len(self._text) >= self.text_buffer_size:
            self._flush()

    def _flush(self) -> None:
        if self._text:
            self._dst.append(''.join(self._text))
            self._text = []

    def _emit(self, buf: int, count: int) -> None:
        for shift in (18, 12, 6, 0)[:count]:
            self._push_char(_base64[(buf >> shift) & 0x3F])

    def _push_byte(self, n: int) -> None:
        self._buf = (self._buf << 8) | (n & 0xFF)
        self._pos += 1
        if self._pos == 3:
            self._emit(self._buf, 4)
            self._buf = 0
            self._pos = 0

    def write_byte(self, n: int) -> None:
        """Append one byte; anything above the low 8 bits is dropped

        Raises CodecBusyError while a bulk write is still running, since the
        byte would otherwise land ahead of input that was queued before it.
        """
        self._check_open()
        self._check_idle()
        self._push_byte(n)

    def write_short(self, n: int) -> None:
        """Append a 16-bit value, low byte first"""
        self.write_byte(n & 0xFF)
        self.write_byte((n >> 8) & 0xFF)

    def write_int(self, n: int) -> None:
        """Append a 32-bit value as two little-endian shorts, low half first"""
        self.write_short(n & 0xFFFF)
        self.write_short((n >> 16) & 0xFFFF)

    def write_round(self, buffer: ByteBuffer, limit: int) -> bool:
        """Encode up to `limit` unread bytes of `buffer`

        Returns:
            True while the buffer still has unread bytes
        """
        self._check_open()
        count = 0
        while count < limit and buffer.has_more():
            self._push_byte(buffer.read_byte())
            count += 1
        return buffer.has_more()

    def write_task(self, buffer: ByteBuffer, consume: bool = False,
                   on_done: OnDone = None) -> RoundTask:
        """Build an unstarted task that encodes the rest of `buffer`

        The buffer's cursor is rewound when the task finishes, or the buffer
        is disposed of if `consume` is set.
        """
        self._check_open()
        finish = buffer.dispose if consume else buffer.reset_cursor
        name = "encoder.consume" if consume else "encoder.write"
        return self._task(lambda limit: self.write_round(buffer, limit),
                          self.bytes_per_round, finish, on_done, name)

    def write(self, buffer: ByteBuffer, scheduler: Optional[Scheduler] = None,
              on_done: OnDone = None) -> RoundTask:
        """Encode every unread byte of `buffer` without taking ownership of it

        With no scheduler the rounds run before this returns; otherwise the
        returned task completes as the scheduler is run.
        """
        return self._launch(self.write_task(buffer, False, on_done), scheduler)

    def consume(self, buffer: ByteBuffer, scheduler: Optional[Scheduler] = None,
                on_done: OnDone = None) -> RoundTask:
        """Like write(), but disposes of `buffer` once it has been read"""
        return self._launch(self.write_task(buffer, True, on_done), scheduler)

    def into_data(self) -> ChunkedString:
        """Finish the last group, pad with '=' and hand over the encoded text"""
        self._check_open()
        self._check_idle()

        if self._pos:
            pending = self._pos
            buf = self._buf << (8 * (3 - pending))
            self._emit(buf, pending + 1)
            for _ in range(3 - pending):
                self._push_char(_pad)
            self._buf = 0
            self._pos = 0
        self._flush()

        dst = self._dst
        self._dst = None
        self._finalized = True
        logger.debug("encoder finalized: %d characters in %d chunk(s)", len(dst), dst.chunk_count)
        return dst


class Base64Decoder(_Codec):
    """
    Incremental Base64 decoder

    Text can arrive in fragments of any length. Complete 4-character groups
    are decoded straight into the destination ByteBuffer; up to three
    leftover characters are carried into the next call.

    Characters outside the alphabet are not rejected: they decode as 0.

    Args:
        chunks_per_round: ChunkedString chunks processed per round by append()/consume()
    """

    CHUNKS_PER_ROUND = 25

    def __init__(self, chunks_per_round: Optional[int] = None):
        super().__init__()
        self.chunks_per_round = chunks_per_round if chunks_per_round is not None else self.CHUNKS_PER_ROUND
        if self.chunks_per_round < 1:
            raise ValueError("chunks per round has to be at least 1")

        self._carry = ''
        self._last_group = ''
        self._chars = 0
        self._dst = ByteBuffer()

    @property
    def carry(self) -> str:
        return self._carry

    def _decode_group(self, group: str) -> None:
        buf = 0
        for c in group:
            buf = (buf << 6) | _lookup(c)
        self._dst.write_byte((buf >> 16) & 0xFF)
        self._dst.write_byte((buf >> 8) & 0xFF)
        self._dst.write_byte(buf & 0xFF)
        self._last_group = group
        self._chars += 4

    def _append_text(self, text: str) -> None:
        text = self._carry + text
        end = len(text) - len(text) % 4
        for i in range(0, end, 4):
            self._decode_group(text[i:i + 4])
        self._carry = text[end:]

    def append_round(self, source: ChunkedString, limit: int) -> bool:
        """Decode up to `limit` chunks from `source`

        Returns:
            True while the source still has unread chunks
        """
        self._check_open()
        count = 0
        while count < limit and source.has_more():
            self._append_text(source.read_chunk())
            count += 1
        return source.has_more()

    def append_task(self, source: ChunkedString, consume: bool = False,
                    on_done: OnDone = None) -> RoundTask:
        """Build an unstarted task that decodes the rest of `source`"""
        self._check_open()
        finish = source.dispose if consume else source.reset_cursor
        name = "decoder.consume" if consume else "decoder.append"
        return self._task(lambda limit: self.append_round(source, limit),
                          self.chunks_per_round, finish, on_done, name)

    def append(self, text: Union[str, ChunkedString], scheduler: Optional[Scheduler] = None,
               on_done: OnDone = None) -> Optional[RoundTask]:
        """
        Feed Base64 text to the decoder

        A plain string is decoded immediately and None is returned; this
        raises CodecBusyError while chunked appends are still running. A
        ChunkedString is read in rounds of `chunks_per_round` chunks and left
        with its cursor rewound; the driving RoundTask is returned, queued
        behind any chunked append already running on `scheduler`.

        Args:
            text: Base64 fragment or chunked source
            scheduler: Scheduler to spread rounds over; None runs them now
            on_done: Called with the task after the last round
        """
        self._check_open()
        if isinstance(text, str):
            self._check_idle()
            self._append_text(text)
            return None
        return self._launch(self.append_task(text, False, on_done), scheduler)

    def consume(self, source: ChunkedString, scheduler: Optional[Scheduler] = None,
                on_done: OnDone = None) -> RoundTask:
        """Like append() with a ChunkedString, but disposes of the source afterwards"""
        return self._launch(self.append_task(source, True, on_done), scheduler)

    def into_data(self) -> ByteBuffer:
        """Validate the total length, strip padding bytes and hand over the data"""
        self._check_open()
        self._check_idle()
        if self._carry:
            raise MalformedLengthError(len(self._carry))

        group = self._last_group
        padding = min(2, len(group) - len(group.rstrip(_pad)))
        dst = self._dst
        if padding:
            dst.truncate(decoded_length(self._chars, padding))

        self._dst = None
        self._finalized = True
        logger.debug("decoder finalized: %d bytes, %d padding", dst.size, padding)
        return dst


def encode(source: Union[ByteBuffer, bytes, bytearray, memoryview]) -> ChunkedString:
    """Encode a whole byte source in one call

    A ByteBuffer is left to the caller with its cursor rewound; plain bytes
    are wrapped in a throwaway buffer.
    """
    encoder = Base64Encoder()
    if isinstance(source, ByteBuffer):
        encoder.write(source)
    else:
        encoder.consume(ByteBuffer.from_bytes(source))
    return encoder.into_data()


def decode(text: Union[str, ChunkedString]) -> ByteBuffer:
    """Decode a whole Base64 text in one call"""
    decoder = Base64Decoder()
    decoder.append(text)
    return decoder.into_data()


def b64encode(data: Union[bytes, bytearray, memoryview]) -> str:
    return encode(data).to_string()


def b64decode(text: str) -> bytes:
    return decode(text).to_bytes()


def encoded_length(srclen: int) -> int:
    return (srclen + 2) // 3 * 4


def decoded_length(srclen: int, padding: int = 0) -> int:
    return ((srclen * 3) >> 2) - padding


# --- Example usage ---
if __name__ == "__main__":
    scheduler = Scheduler()
    encoder = Base64Encoder(bytes_per_round=8)
    encoder.write_int(0xC0FFEE)
    encoder.consume(ByteBuffer.from_bytes(b"split over several ticks"), scheduler=scheduler)
    ticks = scheduler.run_until_idle()
    text = encoder.into_data()
    print(f"Encoded in {ticks} tick(s):\n", text)

    decoder = Base64Decoder(chunks_per_round=2)
    decoder.consume(ChunkedString.from_string(text.to_string(), chunk_length=5), scheduler=scheduler)
    ticks = scheduler.run_until_idle()
    data = decoder.into_data()
    print(f"Decoded in {ticks} tick(s):\n", hex(data.read_int()), data.to_bytes()[4:])
