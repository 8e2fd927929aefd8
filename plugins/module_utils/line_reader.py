"""
chunked line reader. reads a file `chunk_size` bytes at a time and hands out one line at a time
without ever holding the whole file in memory.

a line ends at a newline or at a NUL byte. /proc files sometimes contain garbage, and NUL is
treated as a terminator so that binary input can't produce one enormous line.
"""

LINE_BUFFER_MIN_CAPACITY = 128
CHUNK_SIZE_MIN = 128
LINE_TERMINATORS = b"\n\x00"
WHITESPACE = b" \t\n\r\x0b\x0c"


class LineReaderError(Exception):
    pass


class LineReaderOpenError(LineReaderError):
    pass


class LineReaderOutOfMemory(LineReaderError):
    pass


class LineReaderReadError(LineReaderError):
    pass


class LineReader:
    """
    with LineReader("/proc/cpuinfo") as reader:
        while (line := reader.next_line()) is not None:
            ...

    iterating over the reader yields trimmed lines until end of stream
    """

    def __init__(self, path: str, chunk_size: int = 0):
        self.path = path
        self.chunk_size = max(chunk_size or 0, CHUNK_SIZE_MIN)
        try:
            self._stream = open(path, "rb")
        except OSError as e:
            raise LineReaderOpenError(f'unable to open "{path}": {e}') from e
        self._chunk = b""
        self._chunk_pos = 0
        self._line_buffer = bytearray()
        self._used = 0
        self._eof = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, tb):
        self.close()

    def __iter__(self):
        while self.next_line() is not None:
            yield self.trim()

    def close(self) -> None:
        if self._stream is not None:
            self._stream.close()
            self._stream = None

    @property
    def line(self) -> str:
        return bytes(self._line_buffer[: self._used]).decode("utf8", errors="replace")

    def _grow(self) -> None:
        new_capacity = max(2 * len(self._line_buffer), LINE_BUFFER_MIN_CAPACITY)
        try:
            self._line_buffer.extend(bytes(new_capacity - len(self._line_buffer)))
        except MemoryError as e:
            raise LineReaderOutOfMemory(
                f'unable to grow line buffer to {new_capacity} bytes while reading "{self.path}"'
            ) from e

    def _append(self, data: bytes) -> None:
        while self._used + len(data) > len(self._line_buffer):
            self._grow()
        self._line_buffer[self._used : self._used + len(data)] = data
        self._used += len(data)

    def _read_chunk(self) -> bool:
        "returns False at end of stream"
        try:
            chunk = self._stream.read(self.chunk_size)
        except OSError as e:
            raise LineReaderReadError(f'error reading "{self.path}": {e}') from e
        self._chunk = chunk
        self._chunk_pos = 0
        return len(chunk) > 0

    def _find_terminator(self) -> int:
        positions = [self._chunk.find(x, self._chunk_pos) for x in LINE_TERMINATORS]
        positions = [x for x in positions if x >= 0]
        return min(positions) if positions else -1

    def next_line(self) -> str | None:
        """
        move the next line into the line buffer and return it, terminator excluded
        returns None at end of stream. a trailing line with no terminator is still returned
        """
        if self._stream is None:
            raise LineReaderReadError(f'line reader for "{self.path}" is closed')
        self._used = 0
        have_data = False
        while True:
            if self._chunk_pos >= len(self._chunk):
                if self._eof or not self._read_chunk():
                    self._eof = True
                    return self.line if have_data else None
            end = self._find_terminator()
            if end < 0:
                self._append(self._chunk[self._chunk_pos :])
                self._chunk_pos = len(self._chunk)
                have_data = True
                continue
            self._append(self._chunk[self._chunk_pos : end])
            self._chunk_pos = end + 1
            return self.line

    def trim(self) -> str:
        "strip leading and trailing whitespace from the current line, in place"
        end = self._used
        while end > 0 and self._line_buffer[end - 1] in WHITESPACE:
            end -= 1
        start = 0
        while start < end and self._line_buffer[start] in WHITESPACE:
            start += 1
        if start > 0:
            self._line_buffer[: end - start] = self._line_buffer[start:end]
        self._used = end - start
        return self.line
