from __future__ import annotations

import pytest

from appfuse.buffer import FrameError, RequestFrame
from appfuse.packet import IN_HEADER, LookupIn, Opcode, ReadIn, encode_request


def load(frame: RequestFrame, raw: bytes):
    frame.buffer[: len(raw)] = raw
    return frame.decode_header(len(raw))


def test_short_frame_rejected():
    frame = RequestFrame()
    with pytest.raises(FrameError):
        frame.decode_header(IN_HEADER.size - 1)


def test_oversized_length_rejected():
    frame = RequestFrame(capacity=64)
    with pytest.raises(FrameError):
        frame.decode_header(65)


def test_request_survives_response_writes():
    frame = RequestFrame()
    h = load(frame, encode_request(Opcode.LOOKUP, 1, 1, b"123456\0"))
    req = frame.request(h)

    out = frame.response()
    out.reset(64)
    out.write(b"\xff" * 64)

    assert req == LookupIn(b"123456")
    # The reply really does overwrite the request payload in place.
    assert frame.payload(h) == b"\xff" * 7


def test_stale_bytes_past_declared_length_are_ignored():
    frame = RequestFrame()
    frame.buffer[:] = b"\xee" * frame.capacity
    payload = ReadIn(fh=1, offset=2, size=3).to_payload()[:24]
    h = load(frame, encode_request(Opcode.READ, 1, 5, payload))
    req = frame.request(h)
    assert req == ReadIn(fh=1, offset=2, size=3)


def test_reset_zero_fills():
    frame = RequestFrame()
    out = frame.response()
    out.write(b"\x01" * 16)
    out.reset(8)
    assert bytes(out.view()) == b"\0" * 8
    assert out.size == 8


def test_response_bounded_by_capacity():
    frame = RequestFrame(capacity=IN_HEADER.size + 16)
    out = frame.response()
    assert out.capacity == 16
    with pytest.raises(ValueError):
        out.reset(17)
    with pytest.raises(ValueError):
        out.write(b"x" * 10, offset=8)
    with pytest.raises(ValueError):
        out.set_size(32)
    out.write(b"x" * 16)
    out.set_size(16)
    assert bytes(out.view()) == b"x" * 16
