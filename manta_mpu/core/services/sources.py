"""
Local data sources for part uploads.

Every supported input is normalized to a PartSource that can be read more than
once, so a failed transfer can be retried with the same bytes.
"""

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, Iterable, Iterator, List, Optional, Union

import aiofiles

from ..exceptions import InvalidPartError

DEFAULT_READ_SIZE = 256 * 1024


class PartSource(ABC):
    """A finite, replayable byte stream."""

    @property
    @abstractmethod
    def length(self) -> Optional[int]:
        """Number of bytes if known up front."""
        pass

    @abstractmethod
    def chunks(self) -> AsyncIterator[bytes]:
        """Return a fresh iterator over the whole content."""
        pass


class BytesSource(PartSource):
    """In-memory content."""

    def __init__(self, data: Union[bytes, bytearray, memoryview], read_size: int = DEFAULT_READ_SIZE):
        self._data = bytes(data)
        self._read_size = read_size

    @property
    def length(self) -> Optional[int]:
        return len(self._data)

    async def chunks(self) -> AsyncIterator[bytes]:
        for start in range(0, len(self._data), self._read_size):
            yield self._data[start:start + self._read_size]


@dataclass(frozen=True)
class FileSegment(PartSource):
    """
    A byte range of a local file.

    A length of None means "until end of file".
    """
    path: str
    offset: int = 0
    size: Optional[int] = None
    read_size: int = DEFAULT_READ_SIZE

    def __post_init__(self) -> None:
        if self.offset < 0:
            raise InvalidPartError(f"Negative file offset {self.offset}", path=self.path)
        if self.size is not None and self.size < 0:
            raise InvalidPartError(f"Negative segment size {self.size}", path=self.path)

    @property
    def length(self) -> Optional[int]:
        return self.size

    async def chunks(self) -> AsyncIterator[bytes]:
        remaining = self.size
        async with aiofiles.open(self.path, "rb") as f:
            await f.seek(self.offset)
            while remaining is None or remaining > 0:
                to_read = self.read_size if remaining is None else min(self.read_size, remaining)
                chunk = await f.read(to_read)
                if not chunk:
                    break
                if remaining is not None:
                    remaining -= len(chunk)
                yield chunk


class IterableSource(PartSource):
    """
    Wraps a one-shot (async) iterable.

    Chunks are kept as they are consumed so that later reads replay them and
    then continue with whatever the underlying iterable has left.
    """

    def __init__(self, iterable: Union[Iterable[bytes], AsyncIterable[bytes]]):
        self._iterable = iterable
        self._iterator: Optional[Union[Iterator[bytes], AsyncIterator[bytes]]] = None
        self._buffer: List[bytes] = []
        self._exhausted = False

    @property
    def length(self) -> Optional[int]:
        if self._exhausted:
            return sum(len(c) for c in self._buffer)
        return None

    async def _next_chunk(self) -> Optional[bytes]:
        if self._iterator is None:
            if isinstance(self._iterable, AsyncIterable):
                self._iterator = self._iterable.__aiter__()
            else:
                self._iterator = iter(self._iterable)
        try:
            if isinstance(self._iterator, AsyncIterator):
                chunk = await self._iterator.__anext__()
            else:
                chunk = next(self._iterator)
        except (StopIteration, StopAsyncIteration):
            self._exhausted = True
            return None
        if not isinstance(chunk, (bytes, bytearray, memoryview)):
            raise InvalidPartError(f"Data stream yielded {type(chunk).__name__}, expected bytes")
        return bytes(chunk)

    async def chunks(self) -> AsyncIterator[bytes]:
        index = 0
        while True:
            if index < len(self._buffer):
                yield self._buffer[index]
                index += 1
                continue
            if self._exhausted:
                return
            chunk = await self._next_chunk()
            if chunk is None:
                return
            self._buffer.append(chunk)


def open_source(data: object) -> PartSource:
    """
    Normalize supported part inputs to a PartSource.

    Raises:
        InvalidPartError: For unsupported input types (including str)
    """
    if isinstance(data, PartSource):
        return data
    if isinstance(data, (bytes, bytearray, memoryview)):
        return BytesSource(data)
    if isinstance(data, str):
        raise InvalidPartError("Part data must be bytes, not str; encode it first")
    if isinstance(data, (AsyncIterable, Iterable)):
        return IterableSource(data)  # type: ignore[arg-type]
    raise InvalidPartError(f"Unsupported part data type: {type(data).__name__}")


def split_file(path: str, part_size: int) -> List[FileSegment]:
    """
    Split a local file into consecutive segments of part_size bytes.

    An empty file yields a single empty segment so it can still be uploaded.
    """
    if part_size <= 0:
        raise ValueError("part_size must be positive")
    file_size = os.path.getsize(path)
    if file_size == 0:
        return [FileSegment(path, 0, 0)]
    return [
        FileSegment(path, offset, min(part_size, file_size - offset))
        for offset in range(0, file_size, part_size)
    ]
