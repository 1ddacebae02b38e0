"""Bounded in-process index of search keys written per grid cell."""
from __future__ import annotations

import threading
from collections import OrderedDict
from typing import Iterable


class GridKeyIndex:
    """Maps grid keys to the search keys cached while results overlapped them.

    Memory is bounded on both axes: at most ``max_cells`` cells (least
    recently written evicted first) and ``keys_per_cell`` keys per cell
    (oldest evicted first). Safe for concurrent use from threads and tasks.
    """

    def __init__(self, max_cells: int = 10000, keys_per_cell: int = 64) -> None:
        if max_cells < 1 or keys_per_cell < 1:
            raise ValueError("capacities must be positive")
        self.max_cells = max_cells
        self.keys_per_cell = keys_per_cell
        self._cells: OrderedDict[str, OrderedDict[str, None]] = OrderedDict()
        self._lock = threading.Lock()

    def add(self, grid_keys: Iterable[str], search_key: str) -> None:
        with self._lock:
            for grid_key in dict.fromkeys(grid_keys):
                keys = self._cells.get(grid_key)
                if keys is None:
                    keys = OrderedDict()
                    self._cells[grid_key] = keys
                else:
                    self._cells.move_to_end(grid_key)
                keys[search_key] = None
                keys.move_to_end(search_key)
                while len(keys) > self.keys_per_cell:
                    keys.popitem(last=False)
            while len(self._cells) > self.max_cells:
                self._cells.popitem(last=False)

    def pop(self, grid_key: str) -> list[str]:
        """Remove and return every key recorded for ``grid_key``."""
        with self._lock:
            keys = self._cells.pop(grid_key, None)
        return list(keys) if keys else []

    def keys_for(self, grid_key: str) -> list[str]:
        with self._lock:
            return list(self._cells.get(grid_key, ()))

    def __len__(self) -> int:
        with self._lock:
            return len(self._cells)
