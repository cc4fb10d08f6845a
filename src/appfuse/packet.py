from __future__ import annotations

import enum
import stat
import struct
from dataclasses import dataclass
from typing import Union

from .constants import (
    BATCH_FORGET,
    DESTROY,
    DIR_MODE,
    FILE_MODE,
    FLUSH,
    FORGET,
    FUSE_COMPAT_22_MINOR,
    FUSE_KERNEL_VERSION,
    FUSE_MAX_KERNEL_MINOR,
    GETATTR,
    INIT,
    LOOKUP,
    MAX_READ,
    MAX_WRITE,
    OPEN,
    READ,
    RELEASE,
)

# Native byte order, FUSE 7.x kernel ABI.
IN_HEADER = struct.Struct("=IIQQIII4x")  # len, opcode, unique, nodeid, uid, gid, pid
OUT_HEADER = struct.Struct("=IiQ")  # len, error, unique

INIT_IN = struct.Struct("=IIII")  # major, minor, max_readahead, flags
INIT_OUT_COMPAT_22 = struct.Struct("=IIIIHHI")
INIT_OUT = struct.Struct("=IIIIHHIIHHI28x")
GETATTR_IN = struct.Struct("=I4xQ")  # getattr_flags, fh
OPEN_IN = struct.Struct("=I4x")  # flags
READ_IN = struct.Struct("=QQIIQI4x")  # fh, offset, size, read_flags, lock_owner, flags
WRITE_IN = struct.Struct("=QQIIQI4x")
RELEASE_IN = struct.Struct("=QIIQ")  # fh, flags, release_flags, lock_owner
FLUSH_IN = struct.Struct("=Q8xQ")  # fh, lock_owner
FORGET_IN = struct.Struct("=Q")  # nlookup
BATCH_FORGET_IN = struct.Struct("=I4x")  # count

ATTR = struct.Struct("=QQQQQQIIIIIIIII4x")
ENTRY_OUT = struct.Struct("=QQQQII")  # nodeid, generation, entry_valid, attr_valid, nsecs
ATTR_OUT = struct.Struct("=QI4x")  # attr_valid, attr_valid_nsec
OPEN_OUT = struct.Struct("=QI4x")  # fh, open_flags

ENTRY_OUT_SIZE = ENTRY_OUT.size + ATTR.size
ATTR_OUT_SIZE = ATTR_OUT.size + ATTR.size

# WRITE carries the largest payload of any request.
MAX_REQUEST_SIZE = IN_HEADER.size + WRITE_IN.size + max(MAX_WRITE, MAX_READ)


class Opcode(enum.IntEnum):
    LOOKUP = LOOKUP
    FORGET = FORGET
    GETATTR = GETATTR
    OPEN = OPEN
    READ = READ
    RELEASE = RELEASE
    FLUSH = FLUSH
    INIT = INIT
    DESTROY = DESTROY
    BATCH_FORGET = BATCH_FORGET


def opcode_name(opcode: int) -> str:
    try:
        return Opcode(opcode).name
    except ValueError:
        return str(opcode)


@dataclass(frozen=True, slots=True)
class InHeader:
    length: int
    opcode: int
    unique: int
    nodeid: int
    uid: int = 0
    gid: int = 0
    pid: int = 0

    @staticmethod
    def from_bytes(raw: bytes | bytearray | memoryview) -> "InHeader":
        if len(raw) < IN_HEADER.size:
            raise ValueError("buffer too small to hold a request header")
        return InHeader(*IN_HEADER.unpack_from(raw))

    def to_bytes(self) -> bytes:
        return IN_HEADER.pack(
            self.length, self.opcode, self.unique, self.nodeid, self.uid, self.gid, self.pid
        )


def _fields(layout: struct.Struct, payload: bytes) -> tuple:
    # Older kernel minors send shorter structs; the missing tail reads as zero.
    if len(payload) < layout.size:
        payload = payload.ljust(layout.size, b"\0")
    return layout.unpack_from(payload)


@dataclass(frozen=True, slots=True)
class LookupIn:
    name: bytes

    @classmethod
    def from_payload(cls, payload: bytes) -> "LookupIn":
        name, _, _ = payload.partition(b"\0")
        return cls(name)

    def to_payload(self) -> bytes:
        return self.name + b"\0"


@dataclass(frozen=True, slots=True)
class InitIn:
    major: int = FUSE_KERNEL_VERSION
    minor: int = FUSE_MAX_KERNEL_MINOR
    max_readahead: int = 0
    flags: int = 0

    @classmethod
    def from_payload(cls, payload: bytes) -> "InitIn":
        return cls(*_fields(INIT_IN, payload))

    def to_payload(self) -> bytes:
        return INIT_IN.pack(self.major, self.minor, self.max_readahead, self.flags)


@dataclass(frozen=True, slots=True)
class GetattrIn:
    getattr_flags: int = 0
    fh: int = 0

    @classmethod
    def from_payload(cls, payload: bytes) -> "GetattrIn":
        return cls(*_fields(GETATTR_IN, payload))

    def to_payload(self) -> bytes:
        return GETATTR_IN.pack(self.getattr_flags, self.fh)


@dataclass(frozen=True, slots=True)
class OpenIn:
    flags: int = 0

    @classmethod
    def from_payload(cls, payload: bytes) -> "OpenIn":
        return cls(*_fields(OPEN_IN, payload))

    def to_payload(self) -> bytes:
        return OPEN_IN.pack(self.flags)


@dataclass(frozen=True, slots=True)
class ReadIn:
    fh: int
    offset: int
    size: int
    read_flags: int = 0
    lock_owner: int = 0
    flags: int = 0

    @classmethod
    def from_payload(cls, payload: bytes) -> "ReadIn":
        return cls(*_fields(READ_IN, payload))

    def to_payload(self) -> bytes:
        return READ_IN.pack(
            self.fh, self.offset, self.size, self.read_flags, self.lock_owner, self.flags
        )


@dataclass(frozen=True, slots=True)
class ReleaseIn:
    fh: int
    flags: int = 0
    release_flags: int = 0
    lock_owner: int = 0

    @classmethod
    def from_payload(cls, payload: bytes) -> "ReleaseIn":
        return cls(*_fields(RELEASE_IN, payload))

    def to_payload(self) -> bytes:
        return RELEASE_IN.pack(self.fh, self.flags, self.release_flags, self.lock_owner)


@dataclass(frozen=True, slots=True)
class FlushIn:
    fh: int
    lock_owner: int = 0

    @classmethod
    def from_payload(cls, payload: bytes) -> "FlushIn":
        return cls(*_fields(FLUSH_IN, payload))

    def to_payload(self) -> bytes:
        return FLUSH_IN.pack(self.fh, self.lock_owner)


@dataclass(frozen=True, slots=True)
class ForgetIn:
    nlookup: int = 0

    @classmethod
    def from_payload(cls, payload: bytes) -> "ForgetIn":
        return cls(*_fields(FORGET_IN, payload))

    def to_payload(self) -> bytes:
        return FORGET_IN.pack(self.nlookup)


@dataclass(frozen=True, slots=True)
class BatchForgetIn:
    count: int = 0

    @classmethod
    def from_payload(cls, payload: bytes) -> "BatchForgetIn":
        return cls(*_fields(BATCH_FORGET_IN, payload))


@dataclass(frozen=True, slots=True)
class DestroyIn:
    @classmethod
    def from_payload(cls, payload: bytes) -> "DestroyIn":
        return cls()


@dataclass(frozen=True, slots=True)
class UnsupportedIn:
    opcode: int


Request = Union[
    LookupIn,
    InitIn,
    GetattrIn,
    OpenIn,
    ReadIn,
    ReleaseIn,
    FlushIn,
    ForgetIn,
    BatchForgetIn,
    DestroyIn,
    UnsupportedIn,
]

_DECODERS = {
    Opcode.LOOKUP: LookupIn.from_payload,
    Opcode.FORGET: ForgetIn.from_payload,
    Opcode.GETATTR: GetattrIn.from_payload,
    Opcode.OPEN: OpenIn.from_payload,
    Opcode.READ: ReadIn.from_payload,
    Opcode.RELEASE: ReleaseIn.from_payload,
    Opcode.FLUSH: FlushIn.from_payload,
    Opcode.INIT: InitIn.from_payload,
    Opcode.DESTROY: DestroyIn.from_payload,
    Opcode.BATCH_FORGET: BatchForgetIn.from_payload,
}


def decode_request(opcode: int, payload: bytes) -> Request:
    """Build the owned request value for ``opcode`` from a copied payload."""
    decoder = _DECODERS.get(opcode)
    if decoder is None:
        return UnsupportedIn(opcode)
    return decoder(payload)


def encode_request(opcode: int, unique: int, nodeid: int = 0, payload: bytes = b"") -> bytes:
    """Kernel side of the wire: a complete request frame."""
    header = InHeader(IN_HEADER.size + len(payload), int(opcode), unique, nodeid)
    return header.to_bytes() + payload


@dataclass(frozen=True, slots=True)
class FileAttr:
    ino: int
    size: int
    mode: int
    nlink: int = 1
    blocks: int = 0
    uid: int = 0
    gid: int = 0
    rdev: int = 0
    blksize: int = 0

    @classmethod
    def regular(cls, ino: int, size: int) -> "FileAttr":
        return cls(ino=ino, size=size, mode=stat.S_IFREG | FILE_MODE)

    @classmethod
    def directory(cls, ino: int) -> "FileAttr":
        return cls(ino=ino, size=0, mode=stat.S_IFDIR | DIR_MODE, nlink=2)

    def values(self) -> tuple[int, ...]:
        # atime, mtime, ctime and their nanoseconds stay zero.
        return (
            self.ino, self.size, self.blocks, 0, 0, 0, 0, 0, 0,
            self.mode, self.nlink, self.uid, self.gid, self.rdev, self.blksize,
        )

    @staticmethod
    def unpack_from(raw: bytes | memoryview, offset: int = 0) -> "FileAttr":
        (ino, size, blocks, _, _, _, _, _, _,
         mode, nlink, uid, gid, rdev, blksize) = ATTR.unpack_from(raw, offset)
        return FileAttr(ino, size, mode, nlink, blocks, uid, gid, rdev, blksize)


@dataclass(frozen=True, slots=True)
class InitReplyLayout:
    """One row of the INIT reply table: the struct a kernel minor expects."""

    max_minor: int
    layout: struct.Struct
    fields: tuple[str, ...]

    @property
    def size(self) -> int:
        return self.layout.size

    def values(self, **fields: int) -> tuple[int, ...]:
        # Fields the layout does not carry are dropped; missing ones are zero.
        return tuple(fields.get(name, 0) for name in self.fields)


_INIT_FIELDS_22 = (
    "major",
    "minor",
    "max_readahead",
    "flags",
    "max_background",
    "congestion_threshold",
    "max_write",
)
_INIT_FIELDS_23 = _INIT_FIELDS_22 + ("time_gran", "max_pages", "map_alignment", "flags2")

INIT_REPLY_LAYOUTS = (
    InitReplyLayout(FUSE_COMPAT_22_MINOR, INIT_OUT_COMPAT_22, _INIT_FIELDS_22),
    InitReplyLayout(0xFFFFFFFF, INIT_OUT, _INIT_FIELDS_23),
)


def init_reply_layout(kernel_minor: int) -> InitReplyLayout:
    for row in INIT_REPLY_LAYOUTS:
        if kernel_minor <= row.max_minor:
            return row
    return INIT_REPLY_LAYOUTS[-1]


@dataclass(frozen=True, slots=True)
class Reply:
    unique: int
    error: int = 0
    payload: bytes | memoryview = b""

    @property
    def body(self) -> bytes | memoryview:
        # Error replies never carry data.
        return self.payload if self.error == 0 else b""

    @property
    def length(self) -> int:
        return OUT_HEADER.size + len(self.body)

    def header_bytes(self) -> bytes:
        return OUT_HEADER.pack(self.length, self.error, self.unique)

    def iovecs(self) -> list[bytes | memoryview]:
        body = self.body
        if len(body) == 0:
            return [self.header_bytes()]
        return [self.header_bytes(), body]

    def to_bytes(self) -> bytes:
        return b"".join(bytes(v) for v in self.iovecs())

    @staticmethod
    def ok(unique: int, payload: bytes | memoryview = b"") -> "Reply":
        return Reply(unique=unique, error=0, payload=payload)

    @staticmethod
    def failure(unique: int, errno_: int) -> "Reply":
        return Reply(unique=unique, error=-abs(errno_))

    @staticmethod
    def from_bytes(raw: bytes) -> "Reply":
        if len(raw) < OUT_HEADER.size:
            raise ValueError("datagram too small to be a valid reply")
        length, error, unique = OUT_HEADER.unpack_from(raw)
        if length != len(raw):
            raise ValueError(f"reply length mismatch: header says {length}, got {len(raw)}")
        return Reply(unique=unique, error=error, payload=bytes(raw[OUT_HEADER.size :]))
