from __future__ import annotations

from .constants import MAX_HANDLES

HANDLE_MASK = 0xFFFFFFFF


class HandleTableFull(Exception):
    pass


class HandleTable:
    """Open file handles: u32 handle -> node id, bounded by ``capacity``.

    Handles come from a counter that wraps at 2**32; a candidate that is still
    live is skipped, so a handle is never shared by two open files.
    """

    def __init__(self, capacity: int = MAX_HANDLES, first_handle: int = 0):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._counter = first_handle & HANDLE_MASK
        self._nodes: dict[int, int] = {}

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, handle: int) -> bool:
        return handle in self._nodes

    def try_open(self, node_id: int) -> int:
        if len(self._nodes) >= self.capacity:
            raise HandleTableFull(f"{len(self._nodes)} handles open, limit is {self.capacity}")
        while True:
            handle = self._counter
            self._counter = (self._counter + 1) & HANDLE_MASK
            if handle not in self._nodes:
                break
        self._nodes[handle] = node_id
        return handle

    def lookup(self, handle: int) -> int | None:
        return self._nodes.get(handle)

    def close(self, handle: int) -> None:
        self._nodes.pop(handle, None)

    def clear(self) -> None:
        self._nodes.clear()
