from __future__ import annotations

import errno
import os

import pytest

from appfuse import device as device_mod
from appfuse.device import DeviceGone, FuseDevice
from appfuse.packet import Reply


@pytest.fixture
def pipe():
    r, w = os.pipe()
    yield r, w
    for fd in (r, w):
        try:
            os.close(fd)
        except OSError:
            pass


def test_readinto_retries_on_interrupt(monkeypatch):
    calls = []

    def fake_readv(fd, buffers):
        calls.append(fd)
        if len(calls) == 1:
            raise InterruptedError()
        buffers[0][:4] = b"abcd"
        return 4

    monkeypatch.setattr(device_mod.os, "readv", fake_readv)
    buf = bytearray(8)
    assert FuseDevice(5).readinto(buf) == 4
    assert buf[:4] == b"abcd"
    assert len(calls) == 2


def test_enodev_means_device_gone(monkeypatch):
    def fake_readv(fd, buffers):
        raise OSError(errno.ENODEV, "No such device")

    monkeypatch.setattr(device_mod.os, "readv", fake_readv)
    with pytest.raises(DeviceGone):
        FuseDevice(5).readinto(bytearray(8))


def test_other_read_errors_propagate(monkeypatch):
    def fake_readv(fd, buffers):
        raise OSError(errno.EIO, "I/O error")

    monkeypatch.setattr(device_mod.os, "readv", fake_readv)
    with pytest.raises(OSError) as exc:
        FuseDevice(5).readinto(bytearray(8))
    assert exc.value.errno == errno.EIO
    assert not isinstance(exc.value, DeviceGone)


def test_end_of_stream_means_device_gone(pipe):
    r, w = pipe
    os.close(w)
    dev = FuseDevice(r)
    with pytest.raises(DeviceGone):
        dev.readinto(bytearray(8))


def test_write_reply_is_one_write(pipe):
    r, w = pipe
    dev = FuseDevice(w)
    reply = Reply.ok(7, b"payload")
    assert dev.write_reply(reply) == reply.length
    assert Reply.from_bytes(os.read(r, 1024)) == reply


def test_error_reply_has_no_body(pipe):
    r, w = pipe
    FuseDevice(w).write_reply(Reply(3, -errno.ENOENT, b"junk"))
    raw = os.read(r, 1024)
    assert len(raw) == 16
    assert Reply.from_bytes(raw).error == -errno.ENOENT


def test_from_fd_owns_a_duplicate(pipe):
    r, w = pipe
    with FuseDevice.from_fd(w) as dev:
        assert dev.fd != w
        dev.write_reply(Reply.ok(1))
    assert dev.fd == -1
    # The caller's descriptor is still usable.
    os.write(w, b"x")
    assert os.read(r, 1024) == Reply.ok(1).to_bytes() + b"x"


def test_close_is_idempotent(pipe):
    r, _ = pipe
    dev = FuseDevice.from_fd(r)
    dev.close()
    dev.close()
