"""Incremental Server-Sent Events reader.

Reconstructs ``data:`` lines from a byte stream whose chunk boundaries
are arbitrary: a chunk may end in the middle of a line, of a JSON value,
or of a multi-byte UTF-8 character.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator

from .cancel import CancelToken, guarded

_logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


class StreamIdleTimeout(Exception):
    """No bytes arrived within the configured idle timeout."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"no data received for {timeout:g}s")
        self.timeout = timeout


@dataclass(frozen=True)
class SSEFrame:
    """One ``data:`` payload and the ``event:`` name in effect for it."""

    data: str
    event: str | None = None


async def _next_chunk(it: AsyncIterator[bytes]) -> bytes | None:
    try:
        return await it.__anext__()
    except StopAsyncIteration:
        return None


class SSEFrameReader:
    """Yield ``SSEFrame`` objects from an async byte source.

    Iteration stops at the end of the source or immediately at a
    ``data: [DONE]`` line (any buffered partial line is dropped).  The
    source is closed on every exit path.
    """

    def __init__(
        self,
        source: AsyncIterable[bytes],
        *,
        idle_timeout: float | None = None,
        cancel: CancelToken | None = None,
    ) -> None:
        self._source = source
        self._idle_timeout = idle_timeout
        self._cancel = cancel
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._event: str | None = None
        self.done = False
        self.bytes_read = 0

    def __aiter__(self) -> AsyncIterator[SSEFrame]:
        return self._frames()

    async def _read(self, it: AsyncIterator[bytes]) -> bytes | None:
        read = _next_chunk(it)
        if self._idle_timeout is not None:
            read = asyncio.wait_for(read, timeout=self._idle_timeout)
        try:
            return await guarded(read, self._cancel)
        except asyncio.TimeoutError:
            raise StreamIdleTimeout(self._idle_timeout or 0) from None

    async def _frames(self) -> AsyncIterator[SSEFrame]:
        it = self._source.__aiter__()
        try:
            while True:
                chunk = await self._read(it)
                if chunk is None:
                    tail = self._decoder.decode(b"", final=True)
                    self._buffer += tail
                    if self._buffer:
                        # A final line without a trailing newline still counts.
                        line, self._buffer = self._buffer, ""
                        frame = self._parse_line(line)
                        if frame is not None:
                            yield frame
                    return
                if not chunk:
                    continue
                self.bytes_read += len(chunk)
                self._buffer += self._decoder.decode(chunk)
                lines = self._buffer.split("\n")
                self._buffer = lines.pop()
                for line in lines:
                    frame = self._parse_line(line)
                    if self.done:
                        return
                    if frame is not None:
                        yield frame
        finally:
            aclose = getattr(it, "aclose", None)
            if aclose is not None:
                await aclose()

    def _parse_line(self, line: str) -> SSEFrame | None:
        line = line.rstrip("\r")
        if not line:
            self._event = None
            return None
        if line.startswith(":"):
            return None
        name, sep, value = line.partition(":")
        if not sep:
            return None
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            self._event = value or None
            return None
        if name != "data":
            return None
        if value.strip() == DONE_SENTINEL:
            _logger.debug("SSE stream signalled %s", DONE_SENTINEL)
            self.done = True
            return None
        return SSEFrame(data=value, event=self._event)
