"""
Geometry Sink Module
지오메트리 저장소 - 엔티티 셋, 태그, 부모/자식 및 방향(sense) 관계

``GeometrySink`` is the only thing the tagger writes to. ``MemoryGeometrySink``
keeps everything in Python containers and is what the exporter reads from.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import copy
from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np

from .errors import SinkWriteError

CATEGORIES = ("Group", "Volume", "Surface")

TAG_ID = "id"
TAG_CATEGORY = "category"
TAG_NAME = "name"
TAG_GEOM_DIMENSION = "geometry_dimension"
TAG_MATERIAL = "material"
TAG_FACETING_TOL = "faceting_tolerance"
TAG_GEOM_RESABS = "geometry_resolution_absolute"
TAG_LENGTH_SCALE = "length_scale"


class GeometrySink(ABC):
    """
    Write-side interface of a geometry database.

    Handles are opaque integers. Writes between ``begin()`` and ``commit()``
    form one unit: after ``rollback()`` the sink looks as if none happened.
    """

    @abstractmethod
    def root_set(self) -> int:
        ...

    @abstractmethod
    def create_entity_set(self) -> int:
        ...

    @abstractmethod
    def set_tag(self, handle: int, name: str, value: Any) -> None:
        ...

    @abstractmethod
    def add_facets(self, handle: int, vertices: np.ndarray, triangles: np.ndarray) -> None:
        """Attach a triangle mesh (local vertex array + index triples) to a surface set."""

    @abstractmethod
    def add_to_set(self, parent: int, child: int) -> None:
        """Set membership (e.g. a volume inside a material group)."""

    @abstractmethod
    def add_parent_child(self, parent: int, child: int) -> None:
        """Topological link (volume -> surface)."""

    @abstractmethod
    def set_sense(self, surface: int, forward: int, reverse: int) -> None:
        """``reverse`` is 0 when the surface only bounds ``forward``."""

    @abstractmethod
    def clear(self) -> None:
        """Drop every entity set except the root."""

    def begin(self) -> None:
        pass

    def commit(self) -> None:
        pass

    def rollback(self) -> None:
        pass


@dataclass
class EntitySet:
    handle: int
    tags: dict[str, Any] = field(default_factory=dict)
    vertices: Optional[np.ndarray] = None
    triangles: Optional[np.ndarray] = None
    members: list[int] = field(default_factory=list)
    children: list[int] = field(default_factory=list)
    parents: list[int] = field(default_factory=list)

    @property
    def category(self) -> Optional[str]:
        return self.tags.get(TAG_CATEGORY)

    @property
    def gid(self) -> Optional[int]:
        return self.tags.get(TAG_ID)


class MemoryGeometrySink(GeometrySink):
    """
    메모리 기반 지오메트리 저장소

    Rejects a second entity set with the same (category, id) pair.
    """

    ROOT = 0

    def __init__(self):
        self._sets: dict[int, EntitySet] = {self.ROOT: EntitySet(handle=self.ROOT)}
        self._next = 1
        self._keys: dict[tuple[str, int], int] = {}
        self._senses: dict[int, tuple[int, int]] = {}
        self._snapshot: Optional[tuple] = None

    # transaction ------------------------------------------------------

    def begin(self) -> None:
        if self._snapshot is not None:
            raise SinkWriteError("Transaction already open")
        self._snapshot = copy.deepcopy((self._sets, self._next, self._keys, self._senses))

    def commit(self) -> None:
        self._snapshot = None

    def rollback(self) -> None:
        if self._snapshot is None:
            return
        self._sets, self._next, self._keys, self._senses = self._snapshot
        self._snapshot = None

    @property
    def in_transaction(self) -> bool:
        return self._snapshot is not None

    # writes -----------------------------------------------------------

    def root_set(self) -> int:
        return self.ROOT

    def create_entity_set(self) -> int:
        handle = self._next
        self._next += 1
        self._sets[handle] = EntitySet(handle=handle)
        return handle

    def _get(self, handle: int) -> EntitySet:
        try:
            return self._sets[int(handle)]
        except KeyError:
            raise SinkWriteError(f"Unknown entity set handle: {handle}") from None

    def set_tag(self, handle: int, name: str, value: Any) -> None:
        ent = self._get(handle)
        if name == TAG_CATEGORY and value not in CATEGORIES:
            raise SinkWriteError(f"Invalid category {value!r} (expected one of {CATEGORIES})")
        if name == TAG_ID:
            value = int(value)
            if value < 1:
                raise SinkWriteError(f"IDs must be positive, got {value}")

        ent.tags[name] = value

        if name in (TAG_ID, TAG_CATEGORY) and ent.category is not None and ent.gid is not None:
            key = (str(ent.category), int(ent.gid))
            owner = self._keys.get(key)
            if owner is not None and owner != ent.handle:
                raise SinkWriteError(f"Duplicate {key[0]} id {key[1]}")
            self._keys[key] = ent.handle

    def add_facets(self, handle: int, vertices: np.ndarray, triangles: np.ndarray) -> None:
        ent = self._get(handle)
        vertices = np.asarray(vertices, dtype=np.float64).reshape(-1, 3)
        triangles = np.asarray(triangles, dtype=np.int64).reshape(-1, 3)
        if triangles.size and (triangles.min() < 0 or triangles.max() >= vertices.shape[0]):
            raise SinkWriteError(f"Triangle indices out of range for set {handle}")
        if ent.vertices is None:
            ent.vertices = vertices
            ent.triangles = triangles
        else:
            offset = ent.vertices.shape[0]
            ent.vertices = np.vstack([ent.vertices, vertices])
            ent.triangles = np.vstack([ent.triangles, triangles + offset])

    def add_to_set(self, parent: int, child: int) -> None:
        ent = self._get(parent)
        self._get(child)
        if int(child) not in ent.members:
            ent.members.append(int(child))

    def add_parent_child(self, parent: int, child: int) -> None:
        p = self._get(parent)
        c = self._get(child)
        if c.handle not in p.children:
            p.children.append(c.handle)
        if p.handle not in c.parents:
            c.parents.append(p.handle)

    def set_sense(self, surface: int, forward: int, reverse: int) -> None:
        surf = self._get(surface)
        if surf.category != "Surface":
            raise SinkWriteError(f"Entity set {surface} is not a surface")
        self._get(forward)
        if reverse:
            self._get(reverse)
        self._senses[surf.handle] = (int(forward), int(reverse))

    def clear(self) -> None:
        root = self._sets[self.ROOT]
        self._sets = {self.ROOT: EntitySet(handle=self.ROOT, tags=dict(root.tags))}
        self._next = 1
        self._keys = {}
        self._senses = {}

    # reads ------------------------------------------------------------

    def entity_set(self, handle: int) -> EntitySet:
        return self._get(handle)

    def entity_sets(self, category: str) -> list[EntitySet]:
        """Sets of one category ordered by their id tag."""
        found = [s for s in self._sets.values() if s.category == category]
        return sorted(found, key=lambda s: int(s.gid or 0))

    def find(self, category: str, gid: int) -> EntitySet:
        handle = self._keys.get((str(category), int(gid)))
        if handle is None:
            raise KeyError(f"No {category} with id {gid}")
        return self._sets[handle]

    def sense(self, surface: int) -> tuple[int, int]:
        return self._senses[int(surface)]

    def root_tags(self) -> dict[str, Any]:
        return dict(self._sets[self.ROOT].tags)
