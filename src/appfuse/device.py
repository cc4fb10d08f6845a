from __future__ import annotations

import errno
import os

from .packet import Reply


class DeviceGone(Exception):
    """The mount was torn down; no further requests can arrive."""


class FuseDevice:
    def __init__(self, fd: int):
        self.fd = fd

    @classmethod
    def from_fd(cls, fd: int) -> "FuseDevice":
        # The caller keeps its own descriptor; the session closes only this copy.
        return cls(os.dup(fd))

    def readinto(self, buffer: bytearray | memoryview) -> int:
        while True:
            try:
                n = os.readv(self.fd, [buffer])
            except InterruptedError:
                # Reads interrupted by a signal are retried.
                continue
            except OSError as e:
                if e.errno == errno.ENODEV:
                    raise DeviceGone("device was unmounted") from e
                raise
            if n == 0:
                raise DeviceGone("end of stream on device")
            return n

    def write_reply(self, reply: Reply) -> int:
        return os.writev(self.fd, reply.iovecs())

    def close(self) -> None:
        if self.fd >= 0:
            os.close(self.fd)
            self.fd = -1

    def __enter__(self) -> "FuseDevice":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
