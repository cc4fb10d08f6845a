"""Request/response buffer model.

One fixed ``bytearray`` holds the incoming request. The reply payload is
written over the request payload in place, so everything a handler needs from
the request must be copied out first. ``RequestFrame.request()`` is that copy;
``RequestFrame.response()`` hands out the writable side.
"""

from __future__ import annotations

import struct

from .packet import IN_HEADER, MAX_REQUEST_SIZE, InHeader, Request, decode_request


class FrameError(ValueError):
    pass


class RequestFrame:
    __slots__ = ("buffer", "_view")

    def __init__(self, capacity: int = MAX_REQUEST_SIZE):
        if capacity < IN_HEADER.size:
            raise ValueError(f"capacity {capacity} cannot hold a request header")
        self.buffer = bytearray(capacity)
        self._view = memoryview(self.buffer)

    @property
    def capacity(self) -> int:
        return len(self.buffer)

    def decode_header(self, length: int) -> InHeader:
        if length < IN_HEADER.size:
            raise FrameError(f"request too short: len={length}")
        if length > self.capacity:
            raise FrameError(f"request too long: len={length}, capacity={self.capacity}")
        return InHeader.from_bytes(self._view[: IN_HEADER.size])

    def payload(self, header: InHeader) -> bytes:
        end = min(max(header.length, IN_HEADER.size), self.capacity)
        return bytes(self._view[IN_HEADER.size : end])

    def request(self, header: InHeader) -> Request:
        return decode_request(header.opcode, self.payload(header))

    def response(self) -> "ResponseBuilder":
        return ResponseBuilder(self._view[IN_HEADER.size :])


class ResponseBuilder:
    """Reply payload under construction; shares storage with the request."""

    __slots__ = ("_view", "size")

    def __init__(self, view: memoryview):
        self._view = view
        self.size = 0

    @property
    def capacity(self) -> int:
        return len(self._view)

    def _check(self, end: int) -> None:
        if end > self.capacity:
            raise ValueError(f"reply of {end} bytes exceeds buffer capacity {self.capacity}")

    def reset(self, size: int = 0) -> None:
        if size < 0:
            raise ValueError("reply size must not be negative")
        self._check(size)
        self._view[:size] = bytes(size)
        self.size = size

    def set_size(self, size: int) -> None:
        if size < 0:
            raise ValueError("reply size must not be negative")
        self._check(size)
        self.size = size

    def pack(self, layout: struct.Struct, *values: int, offset: int = 0) -> None:
        self._check(offset + layout.size)
        layout.pack_into(self._view, offset, *values)

    def write(self, data: bytes, offset: int = 0) -> None:
        end = offset + len(data)
        self._check(end)
        self._view[offset:end] = data

    def view(self) -> memoryview:
        return self._view[: self.size]
