from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Protocol

from .buffer import FrameError, RequestFrame
from .device import DeviceGone
from .engine import Action, ProtocolEngine
from .packet import Reply


class Device(Protocol):
    def readinto(self, buffer: bytearray) -> int: ...

    def write_reply(self, reply: Reply) -> int: ...


class SessionEnd(enum.Enum):
    CLEAN = "clean"
    DEVICE_LOST = "device_lost"
    NEGOTIATION_FAILED = "negotiation_failed"

    @property
    def clean(self) -> bool:
        return self is SessionEnd.CLEAN


@dataclass(slots=True)
class LoopStats:
    requests: int = 0
    replies: int = 0
    dropped_frames: int = 0
    read_errors: int = 0
    write_errors: int = 0
    start_ts: float = field(default_factory=time.monotonic)
    end_ts: float | None = None

    @property
    def duration_s(self) -> float:
        if self.end_ts is None:
            return 0.0
        return max(0.0, self.end_ts - self.start_ts)


@dataclass(slots=True)
class IOLoop:
    device: Device
    engine: ProtocolEngine
    frame: RequestFrame = field(default_factory=RequestFrame)
    stats: LoopStats = field(default_factory=LoopStats)

    def run(self) -> SessionEnd:
        logging.info("start fuse loop")
        while True:
            end = self.step()
            if end is not None:
                break
        self.stats.end_ts = time.monotonic()
        logging.info(
            "fuse loop ended: %s; requests=%d dropped=%d read_errors=%d write_errors=%d",
            end.value,
            self.stats.requests,
            self.stats.dropped_frames,
            self.stats.read_errors,
            self.stats.write_errors,
        )
        return end

    def step(self) -> SessionEnd | None:
        """Serve one request; returns how the session ended, or None to go on."""
        try:
            length = self.device.readinto(self.frame.buffer)
        except DeviceGone as e:
            logging.error("device lost: %s", e)
            return SessionEnd.DEVICE_LOST
        except OSError as e:
            self.stats.read_errors += 1
            logging.error("failed to read from device: errno=%s", e.errno)
            return None

        try:
            header = self.frame.decode_header(length)
        except FrameError as e:
            self.stats.dropped_frames += 1
            logging.error("%s", e)
            return None
        if header.length != length:
            self.stats.dropped_frames += 1
            logging.error("malformed header: len=%d, hdr.len=%d", length, header.length)
            return None

        self.stats.requests += 1
        outcome = self.engine.dispatch(self.frame, header)
        if outcome.reply is not None:
            self._send(outcome.reply)

        if outcome.action is Action.STOP:
            return SessionEnd.CLEAN
        if outcome.action is Action.ABORT:
            return SessionEnd.NEGOTIATION_FAILED
        return None

    def _send(self, reply: Reply) -> None:
        try:
            self.device.write_reply(reply)
        except OSError as e:
            self.stats.write_errors += 1
            logging.error("reply failed: unique=%#x errno=%s", reply.unique, e.errno)
            return
        self.stats.replies += 1
