"""appfuse: a user-space FUSE protocol server for a flat, read-only directory.

Files are named by decimal node id under a single root directory; their sizes
and contents come from a pluggable file provider. The package is split the
way the protocol is:
- wire layouts and owned request values (``packet``)
- the shared request/response buffer (``buffer``)
- per-opcode logic and the open handle table (``engine``, ``handles``)
- the device read/reply loop (``device``, ``loop``)
"""

from .engine import EngineConfig, ProtocolEngine
from .loop import IOLoop, SessionEnd
from .provider import DirectoryProvider, FileProvider, MemoryProvider

__all__ = [
    "DirectoryProvider",
    "EngineConfig",
    "FileProvider",
    "IOLoop",
    "MemoryProvider",
    "ProtocolEngine",
    "SessionEnd",
]
