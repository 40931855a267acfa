"""
Volume Mesh Module
체적 메쉬 데이터 구조 및 읽기 전용 접근 인터페이스

The pipeline only talks to meshes through ``MeshAccess``. ``VolumeMesh`` is the
in-memory implementation used by the loader and the tests (tetra, wedge and
hexahedron cells with VTK node ordering).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional
import logging

import numpy as np
from scipy import sparse

from .element_index import ElementIndex
from .errors import ConfigError, TopologyError

_LOGGER = logging.getLogger(__name__)


CELL_NODE_COUNT: dict[str, int] = {"tetra": 4, "wedge": 6, "hexahedron": 8}

# Local face node lists per cell type (VTK / meshio node ordering).
CELL_FACES: dict[str, tuple[tuple[int, ...], ...]] = {
    "tetra": (
        (0, 2, 1),
        (0, 1, 3),
        (1, 2, 3),
        (0, 3, 2),
    ),
    "wedge": (
        (0, 2, 1),
        (3, 4, 5),
        (0, 1, 4, 3),
        (1, 2, 5, 4),
        (2, 0, 3, 5),
    ),
    "hexahedron": (
        (0, 3, 2, 1),
        (4, 5, 6, 7),
        (0, 1, 5, 4),
        (1, 2, 6, 5),
        (2, 3, 7, 6),
        (3, 0, 4, 7),
    ),
}

# Tetrahedral decomposition used for cell volumes.
CELL_TETS: dict[str, tuple[tuple[int, int, int, int], ...]] = {
    "tetra": ((0, 1, 2, 3),),
    "wedge": ((0, 1, 2, 3), (1, 2, 3, 4), (2, 3, 4, 5)),
    "hexahedron": (
        (0, 1, 2, 6),
        (0, 2, 3, 6),
        (0, 3, 7, 6),
        (0, 7, 4, 6),
        (0, 4, 5, 6),
        (0, 5, 1, 6),
    ),
}


class MeshAccess(ABC):
    """
    Read-only view of a host mesh.

    Element-level queries take the stable element ID, never a storage
    position. ``element_ids()`` is ascending and defines the order of every
    per-element array (e.g. ``field_values``).
    """

    unit: str = "cm"

    @abstractmethod
    def element_ids(self) -> np.ndarray:
        ...

    @abstractmethod
    def element_nodes(self, elem_id: int) -> np.ndarray:
        """Node IDs of the element in cell-type node order."""

    @abstractmethod
    def element_block(self, elem_id: int) -> int:
        ...

    @abstractmethod
    def element_volume(self, elem_id: int) -> float:
        ...

    @abstractmethod
    def element_faces(self, elem_id: int) -> list[tuple[int, ...]]:
        """Faces of the element as node-ID tuples, wound so normals point out of the element."""

    @abstractmethod
    def face_neighbors(self, elem_id: int) -> np.ndarray:
        """IDs of the elements sharing a face with ``elem_id`` (ascending)."""

    @abstractmethod
    def node_coords(self, node_ids) -> np.ndarray:
        ...

    @abstractmethod
    def field_values(self, var_name: str) -> np.ndarray:
        ...

    @abstractmethod
    def block_materials(self) -> dict[int, str]:
        """Element block ID -> material name."""

    def set_field(self, var_name: str, values: np.ndarray) -> None:
        raise NotImplementedError(f"{type(self).__name__} does not accept field updates")


@dataclass
class Material:
    """
    재질 정보

    Attributes:
        index: 재질 인덱스 (0..n_materials-1)
        name: 재질 이름
        blocks: 재질에 속하는 요소 블록 ID 집합
    """
    index: int
    name: str
    blocks: frozenset[int]


def find_materials(mesh: MeshAccess) -> list[Material]:
    """
    Group element blocks by material name.

    Materials are indexed in order of first appearance in the block mapping,
    so two blocks mapped to the same name share one material.
    """
    names: list[str] = []
    blocks: dict[str, set[int]] = {}
    for block_id, name in mesh.block_materials().items():
        key = str(name)
        if key not in blocks:
            names.append(key)
            blocks[key] = set()
        blocks[key].add(int(block_id))
    return [Material(index=i, name=n, blocks=frozenset(blocks[n])) for i, n in enumerate(names)]


def _newell_normal(points: np.ndarray) -> np.ndarray:
    """Polygon normal by Newell's method (works for non-planar quads)."""
    nxt = np.roll(points, -1, axis=0)
    return np.array(
        [
            np.sum((points[:, 1] - nxt[:, 1]) * (points[:, 2] + nxt[:, 2])),
            np.sum((points[:, 2] - nxt[:, 2]) * (points[:, 0] + nxt[:, 0])),
            np.sum((points[:, 0] - nxt[:, 0]) * (points[:, 1] + nxt[:, 1])),
        ],
        dtype=np.float64,
    )


@dataclass
class VolumeMesh(MeshAccess):
    """
    체적 메쉬 데이터 컨테이너

    Attributes:
        nodes: (N, 3) 절점 좌표 배열
        cells: 셀 타입별 연결 배열 {'tetra': (M, 4), 'hexahedron': (K, 8), ...}
        blocks: 요소별 블록 ID (cells 순서로 이어붙인 순서)
        block_names: 블록 ID -> 재질 이름
        element_id_list: 요소별 ID (None이면 0..M-1)
        fields: 요소별 스칼라 필드 {이름: (M,) 배열}
        unit: 좌표 단위 ('mm', 'cm', 'm')
    """
    nodes: np.ndarray
    cells: dict[str, np.ndarray]
    blocks: Optional[np.ndarray] = None
    block_names: dict[int, str] = field(default_factory=dict)
    element_id_list: Optional[np.ndarray] = None
    fields: dict[str, np.ndarray] = field(default_factory=dict)
    unit: str = "cm"

    _index: Optional[ElementIndex] = field(default=None, repr=False)
    _adjacency: Optional[sparse.csr_matrix] = field(default=None, repr=False)
    _volumes: Optional[np.ndarray] = field(default=None, repr=False)

    def __post_init__(self):
        self.nodes = np.asarray(self.nodes, dtype=np.float64).reshape(-1, 3)

        cells: dict[str, np.ndarray] = {}
        for cell_type, conn in self.cells.items():
            if cell_type not in CELL_FACES:
                raise ConfigError(f"Unsupported cell type: {cell_type!r}")
            arr = np.asarray(conn, dtype=np.int64).reshape(-1, CELL_NODE_COUNT[cell_type])
            if arr.shape[0] > 0:
                cells[cell_type] = arr
        self.cells = cells

        # Flat per-element views in cells order.
        self._cell_type = np.concatenate(
            [np.full(arr.shape[0], i, dtype=np.int32) for i, arr in enumerate(self.cells.values())]
        ) if self.cells else np.zeros((0,), dtype=np.int32)
        self._cell_row = np.concatenate(
            [np.arange(arr.shape[0], dtype=np.int64) for arr in self.cells.values()]
        ) if self.cells else np.zeros((0,), dtype=np.int64)
        self._type_names = list(self.cells.keys())

        n = self.n_elements
        if self.blocks is None:
            self.blocks = np.zeros(n, dtype=np.int64)
        self.blocks = np.asarray(self.blocks, dtype=np.int64).reshape(-1)
        if self.blocks.shape[0] != n:
            raise ConfigError(f"blocks has {self.blocks.shape[0]} entries for {n} elements")

        if self.element_id_list is None:
            self.element_id_list = np.arange(n, dtype=np.int64)
        self.element_id_list = np.asarray(self.element_id_list, dtype=np.int64).reshape(-1)
        if self.element_id_list.shape[0] != n:
            raise ConfigError(f"element_id_list has {self.element_id_list.shape[0]} entries for {n} elements")

        self.fields = {
            str(k): np.asarray(v, dtype=np.float64).reshape(-1) for k, v in self.fields.items()
        }

    @property
    def n_elements(self) -> int:
        return int(sum(arr.shape[0] for arr in self.cells.values()))

    @property
    def n_nodes(self) -> int:
        return int(self.nodes.shape[0])

    @property
    def index(self) -> ElementIndex:
        if self._index is None:
            self._index = ElementIndex(self.element_id_list)
        return self._index

    def _conn(self, pos: int) -> tuple[str, np.ndarray]:
        cell_type = self._type_names[int(self._cell_type[pos])]
        return cell_type, self.cells[cell_type][int(self._cell_row[pos])]

    # MeshAccess -------------------------------------------------------

    def element_ids(self) -> np.ndarray:
        return self.index.sorted_ids

    def element_nodes(self, elem_id: int) -> np.ndarray:
        return self._conn(self.index.position(elem_id))[1].copy()

    def element_block(self, elem_id: int) -> int:
        return int(self.blocks[self.index.position(elem_id)])

    def element_volume(self, elem_id: int) -> float:
        return float(self.volumes[self.index.position(elem_id)])

    def element_faces(self, elem_id: int) -> list[tuple[int, ...]]:
        cell_type, conn = self._conn(self.index.position(elem_id))
        pts = self.nodes[conn]
        center = pts.mean(axis=0)
        faces: list[tuple[int, ...]] = []
        for local in CELL_FACES[cell_type]:
            face = conn[list(local)]
            fpts = self.nodes[face]
            normal = _newell_normal(fpts)
            # Flip faces of inverted cells so the winding is always outward.
            if float(np.dot(normal, fpts.mean(axis=0) - center)) < 0.0:
                face = face[::-1]
            faces.append(tuple(int(v) for v in face))
        return faces

    def face_neighbors(self, elem_id: int) -> np.ndarray:
        pos = self.index.position(elem_id)
        adj = self.adjacency
        nbr = adj.indices[adj.indptr[pos]:adj.indptr[pos + 1]]
        return np.sort(self.index.ids_at(nbr))

    def node_coords(self, node_ids) -> np.ndarray:
        return self.nodes[np.asarray(node_ids, dtype=np.int64)]

    def field_values(self, var_name: str) -> np.ndarray:
        if var_name not in self.fields:
            raise KeyError(f"Unknown field: {var_name!r} (available: {sorted(self.fields)})")
        values = self.fields[var_name]
        if values.shape[0] != self.n_elements:
            raise ConfigError(f"Field {var_name!r} has {values.shape[0]} values for {self.n_elements} elements")
        return values[self.index.sort_order]

    def block_materials(self) -> dict[int, str]:
        if self.block_names:
            return dict(self.block_names)
        return {int(b): f"block_{int(b)}" for b in np.unique(self.blocks)}

    def set_field(self, var_name: str, values: np.ndarray) -> None:
        """Store a field given in ``element_ids()`` order."""
        values = np.asarray(values, dtype=np.float64).reshape(-1)
        if values.shape[0] != self.n_elements:
            raise ConfigError(f"Field {var_name!r} has {values.shape[0]} values for {self.n_elements} elements")
        stored = np.empty_like(values)
        stored[self.index.sort_order] = values
        self.fields[str(var_name)] = stored

    # Derived data -----------------------------------------------------

    @property
    def volumes(self) -> np.ndarray:
        """요소 체적 (저장 순서, 대형 메쉬용 벡터화 계산)"""
        if self._volumes is None:
            vols = np.zeros(self.n_elements, dtype=np.float64)
            offset = 0
            for cell_type, conn in self.cells.items():
                total = np.zeros(conn.shape[0], dtype=np.float64)
                for a, b, c, d in CELL_TETS[cell_type]:
                    p0 = self.nodes[conn[:, a]]
                    e1 = self.nodes[conn[:, b]] - p0
                    e2 = self.nodes[conn[:, c]] - p0
                    e3 = self.nodes[conn[:, d]] - p0
                    total += np.abs(np.einsum("ij,ij->i", e1, np.cross(e2, e3))) / 6.0
                vols[offset:offset + conn.shape[0]] = total
                offset += conn.shape[0]
            self._volumes = vols
        return self._volumes

    @property
    def adjacency(self) -> sparse.csr_matrix:
        """
        Element face-adjacency graph over storage positions.

        Faces are matched by their sorted node keys (triangles padded with -1).
        A face shared by more than two elements means the mesh is non-manifold.
        """
        if self._adjacency is None:
            n = self.n_elements
            keys = []
            owners = []
            offset = 0
            for cell_type, conn in self.cells.items():
                for local in CELL_FACES[cell_type]:
                    f = conn[:, list(local)]
                    if f.shape[1] == 3:
                        f = np.hstack([f, np.full((f.shape[0], 1), -1, dtype=np.int64)])
                    keys.append(np.sort(f, axis=1))
                    owners.append(np.arange(offset, offset + conn.shape[0], dtype=np.int64))
                offset += conn.shape[0]

            if not keys:
                self._adjacency = sparse.csr_matrix((n, n), dtype=np.uint8)
                return self._adjacency

            all_keys = np.vstack(keys)
            all_owners = np.concatenate(owners)

            order = np.lexsort(all_keys.T[::-1])
            keys_s = all_keys[order]
            owners_s = all_owners[order]

            is_new = np.empty((keys_s.shape[0],), dtype=bool)
            is_new[0] = True
            is_new[1:] = np.any(keys_s[1:] != keys_s[:-1], axis=1)
            starts = np.flatnonzero(is_new)
            counts = np.diff(np.append(starts, keys_s.shape[0]))

            if bool(np.any(counts > 2)):
                bad = keys_s[starts[counts > 2][0]]
                raise TopologyError(f"Non-manifold face shared by more than two elements: {bad[bad >= 0].tolist()}")

            pair = starts[counts == 2]
            a = owners_s[pair]
            b = owners_s[pair + 1]
            rows = np.concatenate([a, b])
            cols = np.concatenate([b, a])
            data = np.ones((rows.size,), dtype=np.uint8)
            graph = sparse.csr_matrix((data, (rows, cols)), shape=(n, n))
            graph.sum_duplicates()
            graph.sort_indices()
            self._adjacency = graph
            _LOGGER.debug("Built face adjacency: %d elements, %d shared faces", n, int(pair.size))
        return self._adjacency


def box_mesh(
    shape: tuple[int, int, int] = (1, 1, 1),
    *,
    spacing: float | tuple[float, float, float] = 1.0,
    origin: tuple[float, float, float] = (0.0, 0.0, 0.0),
    cell_type: str = "hexahedron",
    unit: str = "cm",
) -> VolumeMesh:
    """
    Structured box mesh.

    Hexahedron ``(i, j, k)`` gets element ID ``i + nx * (j + ny * k)``. With
    ``cell_type='tetra'`` each hexahedron is split into six tetrahedra around
    its 0-6 diagonal (conforming between neighbours); tetra IDs are
    ``hex_id * 6 + t``.
    """
    nx, ny, nz = (int(s) for s in shape)
    if min(nx, ny, nz) < 1:
        raise ConfigError(f"Box shape must be positive, got {shape}")
    if cell_type not in ("hexahedron", "tetra"):
        raise ConfigError(f"Unsupported box cell type: {cell_type!r}")

    dx, dy, dz = (float(spacing),) * 3 if np.isscalar(spacing) else (float(s) for s in spacing)
    xs = origin[0] + dx * np.arange(nx + 1)
    ys = origin[1] + dy * np.arange(ny + 1)
    zs = origin[2] + dz * np.arange(nz + 1)
    zz, yy, xx = np.meshgrid(zs, ys, xs, indexing="ij")
    nodes = np.column_stack([xx.ravel(), yy.ravel(), zz.ravel()])

    def nid(i, j, k):
        return i + (nx + 1) * (j + (ny + 1) * k)

    hexes = []
    for k in range(nz):
        for j in range(ny):
            for i in range(nx):
                hexes.append([
                    nid(i, j, k), nid(i + 1, j, k), nid(i + 1, j + 1, k), nid(i, j + 1, k),
                    nid(i, j, k + 1), nid(i + 1, j, k + 1), nid(i + 1, j + 1, k + 1), nid(i, j + 1, k + 1),
                ])
    hexes = np.asarray(hexes, dtype=np.int64)

    if cell_type == "hexahedron":
        return VolumeMesh(nodes=nodes, cells={"hexahedron": hexes}, unit=unit)

    tets = hexes[:, np.asarray(CELL_TETS["hexahedron"])].reshape(-1, 4)
    return VolumeMesh(nodes=nodes, cells={"tetra": tets}, unit=unit)
