from __future__ import annotations

import enum
import errno
import logging
from dataclasses import dataclass, field
from typing import Callable

from .buffer import RequestFrame, ResponseBuilder
from .constants import (
    DEFAULT_ATTR_TIMEOUT,
    DEFAULT_CONGESTION_THRESHOLD,
    DEFAULT_ENTRY_TIMEOUT,
    DEFAULT_MAX_BACKGROUND,
    FUSE_ATOMIC_O_TRUNC,
    FUSE_BIG_WRITES,
    FUSE_KERNEL_VERSION,
    FUSE_MAX_KERNEL_MINOR,
    FUSE_MIN_KERNEL_MINOR,
    FUSE_ROOT_ID,
    MAX_HANDLES,
    MAX_READ,
    MAX_WRITE,
)
from .handles import HandleTable, HandleTableFull
from .packet import (
    ATTR,
    ATTR_OUT,
    ATTR_OUT_SIZE,
    ENTRY_OUT,
    ENTRY_OUT_SIZE,
    OPEN_OUT,
    BatchForgetIn,
    DestroyIn,
    FileAttr,
    FlushIn,
    ForgetIn,
    GetattrIn,
    InHeader,
    InitIn,
    LookupIn,
    OpenIn,
    ReadIn,
    ReleaseIn,
    Reply,
    Request,
    init_reply_layout,
    opcode_name,
)
from .provider import FileProvider

NODE_ID_MAX = 0xFFFFFFFFFFFFFFFF
NODE_ID_DIGITS = len(str(NODE_ID_MAX))


class FuseError(Exception):
    """A request failed; ``errno`` goes back to the kernel negated."""

    def __init__(self, errno_: int, message: str = ""):
        super().__init__(message or errno.errorcode.get(errno_, str(errno_)))
        self.errno = errno_


class NegotiationError(Exception):
    pass


class Action(enum.Enum):
    CONTINUE = "continue"
    STOP = "stop"
    ABORT = "abort"


@dataclass(frozen=True, slots=True)
class Outcome:
    action: Action
    reply: Reply | None = None


@dataclass(frozen=True, slots=True)
class EngineConfig:
    max_handles: int = MAX_HANDLES
    max_read: int = MAX_READ
    max_write: int = MAX_WRITE
    attr_timeout: int = DEFAULT_ATTR_TIMEOUT
    entry_timeout: int = DEFAULT_ENTRY_TIMEOUT
    max_background: int = DEFAULT_MAX_BACKGROUND
    congestion_threshold: int = DEFAULT_CONGESTION_THRESHOLD

    def __post_init__(self) -> None:
        if self.max_handles < 1:
            raise ValueError("max_handles must be at least 1")
        if not 0 < self.max_read <= MAX_READ:
            raise ValueError(f"max_read must be within 1..{MAX_READ}")
        if not 0 < self.max_write <= MAX_WRITE:
            raise ValueError(f"max_write must be within 1..{MAX_WRITE}")
        if self.attr_timeout < 0 or self.entry_timeout < 0:
            raise ValueError("cache timeouts must not be negative")


def parse_node_name(name: bytes) -> int | None:
    """Node id named by a lookup, or None if ``name`` does not name a file."""
    if not name.isdigit() or len(name) > NODE_ID_DIGITS:
        return None
    node_id = int(name)
    if node_id <= FUSE_ROOT_ID or node_id > NODE_ID_MAX:
        return None
    return node_id


Handler = Callable[[InHeader, Request, ResponseBuilder], None]


@dataclass(slots=True)
class ProtocolEngine:
    """Answers one decoded request at a time for a flat, read-only directory.

    Handlers only ever see the owned request value produced by
    ``RequestFrame.request()``, never the frame itself, because the reply is
    written over the request bytes.
    """

    provider: FileProvider
    config: EngineConfig = field(default_factory=EngineConfig)
    handles: HandleTable | None = None
    version: tuple[int, int] | None = field(default=None, init=False)
    _handlers: dict[type, Handler] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.handles is None:
            self.handles = HandleTable(self.config.max_handles)
        self._handlers = {
            LookupIn: self._lookup,
            InitIn: self._init,
            GetattrIn: self._getattr,
            OpenIn: self._open,
            ReadIn: self._read,
            ReleaseIn: self._release,
            FlushIn: self._flush,
        }

    def dispatch(self, frame: RequestFrame, header: InHeader) -> Outcome:
        logging.debug(
            "request op=%s unique=%#x nodeid=%#x len=%d",
            opcode_name(header.opcode), header.unique, header.nodeid, header.length,
        )
        request = frame.request(header)

        if isinstance(request, (ForgetIn, BatchForgetIn)):
            return Outcome(Action.CONTINUE)

        if isinstance(request, DestroyIn):
            logging.info("DESTROY received; %d handles still open", len(self.handles))
            self.handles.clear()
            return Outcome(Action.STOP, Reply.ok(header.unique))

        handler = self._handlers.get(type(request))
        if handler is None:
            logging.debug(
                "NOTIMPL op=%d unique=%#x nodeid=%#x", header.opcode, header.unique, header.nodeid
            )
            return Outcome(Action.CONTINUE, Reply.failure(header.unique, errno.ENOSYS))

        response = frame.response()
        try:
            handler(header, request, response)
        except NegotiationError as e:
            logging.error("INIT failed: %s", e)
            return Outcome(Action.ABORT, Reply.failure(header.unique, errno.EPROTO))
        except FuseError as e:
            logging.debug("op=%s failed: %s", opcode_name(header.opcode), e)
            return Outcome(Action.CONTINUE, Reply.failure(header.unique, e.errno))
        return Outcome(Action.CONTINUE, Reply.ok(header.unique, response.view()))

    def _size_of(self, node_id: int) -> int:
        try:
            return self.provider.size_of(node_id)
        except Exception:
            logging.warning("size query for node %d failed", node_id, exc_info=True)
            return -1

    def _read_range(self, node_id: int, offset: int, length: int) -> bytes | None:
        try:
            return self.provider.read_range(node_id, offset, length)
        except Exception:
            logging.warning(
                "read of node %d at %d (+%d) failed", node_id, offset, length, exc_info=True
            )
            return None

    def _lookup(self, header: InHeader, request: LookupIn, out: ResponseBuilder) -> None:
        if header.nodeid != FUSE_ROOT_ID:
            raise FuseError(errno.ENOENT)
        node_id = parse_node_name(request.name)
        if node_id is None:
            raise FuseError(errno.ENOENT)
        size = self._size_of(node_id)
        if size < 0:
            raise FuseError(errno.ENOENT)

        out.reset(ENTRY_OUT_SIZE)
        out.pack(ENTRY_OUT, node_id, 0, self.config.entry_timeout, self.config.attr_timeout, 0, 0)
        out.pack(ATTR, *FileAttr.regular(node_id, size).values(), offset=ENTRY_OUT.size)

    def _init(self, header: InHeader, request: InitIn, out: ResponseBuilder) -> None:
        if request.major != FUSE_KERNEL_VERSION or request.minor < FUSE_MIN_KERNEL_MINOR:
            raise NegotiationError(
                f"kernel version {request.major}.{request.minor}, "
                f"expected at least {FUSE_KERNEL_VERSION}.{FUSE_MIN_KERNEL_MINOR}"
            )
        minor = min(request.minor, FUSE_MAX_KERNEL_MINOR)
        layout = init_reply_layout(request.minor)

        out.reset(layout.size)
        out.pack(
            layout.layout,
            *layout.values(
                major=FUSE_KERNEL_VERSION,
                minor=minor,
                max_readahead=request.max_readahead,
                flags=FUSE_ATOMIC_O_TRUNC | FUSE_BIG_WRITES,
                max_background=self.config.max_background,
                congestion_threshold=self.config.congestion_threshold,
                max_write=self.config.max_write,
            ),
        )
        self.version = (FUSE_KERNEL_VERSION, minor)
        logging.info(
            "negotiated protocol %d.%d (kernel offered %d.%d)",
            FUSE_KERNEL_VERSION, minor, request.major, request.minor,
        )

    def _getattr(self, header: InHeader, request: GetattrIn, out: ResponseBuilder) -> None:
        if header.nodeid == FUSE_ROOT_ID:
            attr = FileAttr.directory(FUSE_ROOT_ID)
        else:
            size = self._size_of(header.nodeid)
            if size < 0:
                raise FuseError(errno.ENOENT)
            attr = FileAttr.regular(header.nodeid, size)

        out.reset(ATTR_OUT_SIZE)
        out.pack(ATTR_OUT, self.config.attr_timeout, 0)
        out.pack(ATTR, *attr.values(), offset=ATTR_OUT.size)

    def _open(self, header: InHeader, request: OpenIn, out: ResponseBuilder) -> None:
        try:
            handle = self.handles.try_open(header.nodeid)
        except HandleTableFull:
            raise FuseError(errno.EMFILE) from None
        out.reset(OPEN_OUT.size)
        out.pack(OPEN_OUT, handle, 0)

    def _read(self, header: InHeader, request: ReadIn, out: ResponseBuilder) -> None:
        if request.size > self.config.max_read:
            raise FuseError(errno.EINVAL)
        node_id = self.handles.lookup(request.fh)
        if node_id is None:
            raise FuseError(errno.EBADF)
        file_size = self._size_of(node_id)
        if file_size < 0:
            raise FuseError(errno.EIO)

        # Past end of file the read is short, possibly empty, never an error.
        length = max(0, min(request.size, file_size - request.offset))
        out.reset(0)
        if length == 0:
            return
        data = self._read_range(node_id, request.offset, length)
        if data is None or len(data) != length:
            raise FuseError(errno.EIO)
        out.write(data)
        out.set_size(length)

    def _release(self, header: InHeader, request: ReleaseIn, out: ResponseBuilder) -> None:
        self.handles.close(request.fh)
        out.reset(0)

    def _flush(self, header: InHeader, request: FlushIn, out: ResponseBuilder) -> None:
        out.reset(0)
