from __future__ import annotations

import os
import socket
import threading
import time
from dataclasses import dataclass

from .constants import FUSE_KERNEL_VERSION, FUSE_MAX_KERNEL_MINOR, FUSE_ROOT_ID, MAX_READ
from .device import FuseDevice
from .engine import ProtocolEngine
from .loop import IOLoop, SessionEnd
from .packet import (
    MAX_REQUEST_SIZE,
    OPEN_OUT,
    OUT_HEADER,
    FlushIn,
    ForgetIn,
    GetattrIn,
    InitIn,
    LookupIn,
    Opcode,
    OpenIn,
    ReadIn,
    ReleaseIn,
    Reply,
    encode_request,
)
from .provider import MemoryProvider


class KernelClient:
    """Plays the kernel's side of a session over a SOCK_SEQPACKET socket."""

    def __init__(self, sock: socket.socket):
        self.sock = sock
        self._unique = 0

    def send(self, opcode: int, nodeid: int = 0, payload: bytes = b"") -> int:
        self._unique += 1
        self.sock.send(encode_request(opcode, self._unique, nodeid, payload))
        return self._unique

    def recv(self) -> Reply:
        return Reply.from_bytes(self.sock.recv(OUT_HEADER.size + MAX_REQUEST_SIZE))

    def call(self, opcode: int, nodeid: int = 0, payload: bytes = b"") -> Reply:
        unique = self.send(opcode, nodeid, payload)
        reply = self.recv()
        if reply.unique != unique:
            raise ValueError(f"reply for {reply.unique:#x}, expected {unique:#x}")
        return reply

    def init(
        self,
        major: int = FUSE_KERNEL_VERSION,
        minor: int = FUSE_MAX_KERNEL_MINOR,
        max_readahead: int = MAX_READ,
    ) -> Reply:
        return self.call(Opcode.INIT, 0, InitIn(major, minor, max_readahead).to_payload())

    def lookup(self, name: bytes | str, parent: int = FUSE_ROOT_ID) -> Reply:
        if isinstance(name, str):
            name = name.encode()
        return self.call(Opcode.LOOKUP, parent, LookupIn(name).to_payload())

    def getattr(self, nodeid: int) -> Reply:
        return self.call(Opcode.GETATTR, nodeid, GetattrIn().to_payload())

    def open(self, nodeid: int) -> Reply:
        return self.call(Opcode.OPEN, nodeid, OpenIn(os.O_RDONLY).to_payload())

    def read(self, fh: int, offset: int, size: int, nodeid: int = 0) -> Reply:
        return self.call(Opcode.READ, nodeid, ReadIn(fh, offset, size).to_payload())

    def flush(self, fh: int, nodeid: int = 0) -> Reply:
        return self.call(Opcode.FLUSH, nodeid, FlushIn(fh).to_payload())

    def release(self, fh: int, nodeid: int = 0) -> Reply:
        return self.call(Opcode.RELEASE, nodeid, ReleaseIn(fh).to_payload())

    def forget(self, nodeid: int, nlookup: int = 1) -> None:
        # FORGET is never answered.
        self.send(Opcode.FORGET, nodeid, ForgetIn(nlookup).to_payload())

    def destroy(self) -> Reply:
        return self.call(Opcode.DESTROY, 0, b"")

    @staticmethod
    def handle_of(reply: Reply) -> int:
        fh, _ = OPEN_OUT.unpack_from(reply.payload)
        return fh


@dataclass(frozen=True, slots=True)
class BenchmarkResult:
    bytes_transferred: int
    duration_s: float
    throughput_mbps: float
    requests: int


def run_benchmark(*, size_bytes: int, read_size: int = MAX_READ, node_id: int = 42) -> BenchmarkResult:
    payload = os.urandom(size_bytes)
    provider = MemoryProvider({node_id: payload})

    kernel_sock, fuse_sock = socket.socketpair(socket.AF_UNIX, socket.SOCK_SEQPACKET)
    device = FuseDevice.from_fd(fuse_sock.fileno())
    loop = IOLoop(device, ProtocolEngine(provider))

    loop_result: dict[str, SessionEnd] = {}

    def loop_runner():
        try:
            loop_result["end"] = loop.run()
        finally:
            device.close()

    t = threading.Thread(target=loop_runner, daemon=True)
    t.start()

    client = KernelClient(kernel_sock)
    received = bytearray()
    try:
        start = time.monotonic()
        client.init()
        client.lookup(str(node_id))
        fh = KernelClient.handle_of(client.open(node_id))
        while True:
            reply = client.read(fh, len(received), read_size, nodeid=node_id)
            if reply.error:
                raise RuntimeError(f"read failed at offset {len(received)}: error {reply.error}")
            if not reply.payload:
                break
            received += reply.payload
        client.release(fh, nodeid=node_id)
        client.destroy()
        duration = time.monotonic() - start
    finally:
        kernel_sock.close()
        t.join(timeout=5.0)
        fuse_sock.close()

    if bytes(received) != payload:
        raise RuntimeError("content read back through the loop does not match")
    if loop_result.get("end") is not SessionEnd.CLEAN:
        raise RuntimeError(f"session ended with {loop_result.get('end')}")

    mbps = (len(received) * 8 / 1_000_000) / duration if duration > 0 else 0.0
    return BenchmarkResult(
        bytes_transferred=len(received),
        duration_s=duration,
        throughput_mbps=mbps,
        requests=loop.stats.requests,
    )
