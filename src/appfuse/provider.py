"""File providers: where node sizes and contents come from.

The engine only ever asks two questions of a provider, how large a node is and
what bytes lie in a range of it. Either answer may come from a slow or remote
source, so both are allowed to fail.
"""

from __future__ import annotations

import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, runtime_checkable


class ProviderError(Exception):
    pass


@runtime_checkable
class FileProvider(Protocol):
    def size_of(self, node_id: int) -> int:
        """Byte length of ``node_id``, or a negative value if it does not exist."""
        ...

    def read_range(self, node_id: int, offset: int, length: int) -> bytes | None:
        """At most ``length`` bytes at ``offset``; ``None`` on failure."""
        ...


@dataclass(slots=True)
class MemoryProvider:
    files: dict[int, bytes] = field(default_factory=dict)

    def size_of(self, node_id: int) -> int:
        data = self.files.get(node_id)
        return -1 if data is None else len(data)

    def read_range(self, node_id: int, offset: int, length: int) -> bytes | None:
        data = self.files.get(node_id)
        if data is None:
            return None
        return data[offset : offset + length]


@dataclass(slots=True)
class DirectoryProvider:
    """Serves ``root/<decimal node id>`` regular files."""

    root: Path

    def __post_init__(self) -> None:
        self.root = Path(self.root)

    def _path(self, node_id: int) -> Path:
        return self.root / str(node_id)

    def size_of(self, node_id: int) -> int:
        try:
            st = self._path(node_id).stat()
        except FileNotFoundError:
            return -1
        if not stat.S_ISREG(st.st_mode):
            return -1
        return st.st_size

    def read_range(self, node_id: int, offset: int, length: int) -> bytes | None:
        try:
            with open(self._path(node_id), "rb") as f:
                f.seek(offset)
                return f.read(length)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise ProviderError(f"reading node {node_id} failed: {e}") from e
