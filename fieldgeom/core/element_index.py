"""
Element ID <-> storage position table.

Mesh stores hand out stable element IDs that are not necessarily dense or
sorted. This table maps both ways and is rebuilt per mesh (or per pipeline
run), so no stale handles survive a mesh update.
"""

from __future__ import annotations

import numpy as np

from .errors import ConfigError


class ElementIndex:
    def __init__(self, element_ids):
        ids = np.asarray(element_ids, dtype=np.int64).reshape(-1)
        order = np.argsort(ids, kind="stable")
        sorted_ids = ids[order]
        if sorted_ids.size > 1 and bool(np.any(sorted_ids[1:] == sorted_ids[:-1])):
            dup = int(sorted_ids[1:][sorted_ids[1:] == sorted_ids[:-1]][0])
            raise ConfigError(f"Duplicate element ID: {dup}")

        self._ids = ids
        self._order = order
        self._sorted = sorted_ids
        self._pos = {int(e): int(p) for p, e in enumerate(ids)}

    def __len__(self) -> int:
        return int(self._ids.shape[0])

    def __contains__(self, elem_id) -> bool:
        return int(elem_id) in self._pos

    @property
    def sorted_ids(self) -> np.ndarray:
        """Element IDs in ascending order."""
        return self._sorted

    @property
    def sort_order(self) -> np.ndarray:
        """Storage positions in ascending-ID order."""
        return self._order

    def position(self, elem_id: int) -> int:
        try:
            return self._pos[int(elem_id)]
        except KeyError:
            raise KeyError(f"Unknown element ID: {elem_id}") from None

    def ids_at(self, positions) -> np.ndarray:
        return self._ids[np.asarray(positions, dtype=np.int64)]

    def rank(self, elem_id: int) -> int:
        """Index of ``elem_id`` within ``sorted_ids`` (solution-vector slot)."""
        r = int(np.searchsorted(self._sorted, int(elem_id)))
        if r >= self._sorted.shape[0] or int(self._sorted[r]) != int(elem_id):
            raise KeyError(f"Unknown element ID: {elem_id}")
        return r

    def id_at_rank(self, rank: int) -> int:
        return int(self._sorted[int(rank)])
