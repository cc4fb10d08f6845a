from __future__ import annotations

import errno
import socket
import threading

import pytest

from appfuse.bench import KernelClient, run_benchmark
from appfuse.device import FuseDevice
from appfuse.engine import ProtocolEngine
from appfuse.loop import IOLoop, SessionEnd
from appfuse.packet import ENTRY_OUT, INIT_OUT, FileAttr
from appfuse.provider import DirectoryProvider

CONTENT = bytes(range(256)) * 40


@pytest.fixture
def session(tmp_path):
    (tmp_path / "42").write_bytes(CONTENT)
    kernel_sock, fuse_sock = socket.socketpair(socket.AF_UNIX, socket.SOCK_SEQPACKET)
    device = FuseDevice.from_fd(fuse_sock.fileno())
    loop = IOLoop(device, ProtocolEngine(DirectoryProvider(tmp_path)))
    result = {}

    def runner():
        try:
            result["end"] = loop.run()
        finally:
            device.close()

    t = threading.Thread(target=runner, daemon=True)
    t.start()
    yield KernelClient(kernel_sock), kernel_sock, t, result
    kernel_sock.close()
    t.join(timeout=5.0)
    fuse_sock.close()


def test_full_session_over_socket(session):
    client, _, t, result = session

    r = client.init(7, 31)
    assert INIT_OUT.unpack(r.payload)[:2] == (7, 15)

    r = client.lookup("42")
    assert r.error == 0
    assert FileAttr.unpack_from(r.payload, ENTRY_OUT.size).size == len(CONTENT)

    fh = KernelClient.handle_of(client.open(42))
    got = bytearray()
    while True:
        r = client.read(fh, len(got), 4096, nodeid=42)
        assert r.error == 0
        if not r.payload:
            break
        got += r.payload
    assert bytes(got) == CONTENT

    client.forget(42)
    assert client.flush(fh, nodeid=42).error == 0
    assert client.release(fh, nodeid=42).error == 0
    assert client.read(fh, 0, 10, nodeid=42).error == -errno.EBADF

    assert client.destroy().error == 0
    t.join(timeout=5.0)
    assert result["end"] is SessionEnd.CLEAN


def test_peer_closing_is_device_lost(session):
    client, kernel_sock, t, result = session
    client.init()
    kernel_sock.close()
    t.join(timeout=5.0)
    assert result["end"] is SessionEnd.DEVICE_LOST


def test_missing_file_over_socket(session):
    client, _, _, _ = session
    client.init()
    assert client.lookup("43").error == -errno.ENOENT
    assert client.getattr(43).error == -errno.ENOENT


def test_benchmark_roundtrip():
    r = run_benchmark(size_bytes=300_000, read_size=64 * 1024)
    assert r.bytes_transferred == 300_000
    assert r.requests > 5
    assert r.duration_s >= 0
