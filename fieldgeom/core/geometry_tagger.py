"""
Geometry Tagger Module
지오메트리 태깅 - 재질 그룹, 볼륨, 표면에 ID와 메타데이터 기록

IDs are 1-based per category: groups follow material order, volumes follow
region discovery order, surfaces follow extraction order. The whole write is
one sink transaction.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Sequence

import numpy as np

from .errors import SinkWriteError
from .geometry_sink import (
    GeometrySink,
    TAG_CATEGORY,
    TAG_FACETING_TOL,
    TAG_GEOM_DIMENSION,
    TAG_GEOM_RESABS,
    TAG_ID,
    TAG_LENGTH_SCALE,
    TAG_MATERIAL,
    TAG_NAME,
)
from .region_builder import Region
from .surface_extractor import EXTERIOR, ExtractionResult, SurfacePatch
from .volume_mesh import MeshAccess, Material

_LOGGER = logging.getLogger(__name__)

GROUP_NAME_PREFIX = "mat:"


@dataclass
class TaggedGeometry:
    """
    기록된 엔티티 핸들

    Attributes:
        groups: 그룹 ID -> 핸들
        volumes: 볼륨 ID -> 핸들
        surfaces: 표면 ID -> 핸들
    """
    groups: dict[int, int] = field(default_factory=dict)
    volumes: dict[int, int] = field(default_factory=dict)
    surfaces: dict[int, int] = field(default_factory=dict)

    @property
    def id_signature(self) -> tuple:
        """Sorted ID tuples per category, handy for comparing runs."""
        return (
            tuple(sorted(self.groups)),
            tuple(sorted(self.volumes)),
            tuple(sorted(self.surfaces)),
        )


def triangulate_faces(mesh: MeshAccess, faces: Sequence[Sequence[int]], length_scale: float = 1.0):
    """
    Turn a patch's polygon faces into a local triangle mesh.

    Polygons are fan-triangulated from their first node, which keeps the
    winding (and so the surface normal) of the input faces.

    Returns:
        (vertices (V, 3) scaled by ``length_scale``, triangles (T, 3))
    """
    node_ids = sorted({int(n) for face in faces for n in face})
    local = {n: i for i, n in enumerate(node_ids)}
    tris: list[tuple[int, int, int]] = []
    for face in faces:
        f = [local[int(n)] for n in face]
        for k in range(1, len(f) - 1):
            tris.append((f[0], f[k], f[k + 1]))

    vertices = np.asarray(mesh.node_coords(node_ids), dtype=np.float64).reshape(-1, 3) * float(length_scale)
    return vertices, np.asarray(tris, dtype=np.int64).reshape(-1, 3)


class GeometryTagger:
    """
    지오메트리 태거

    Args:
        length_scale: 메쉬 길이 단위 -> 출력 길이 단위 배율
        faceting_tol: 루트 셋의 faceting_tolerance
        geom_tol: 루트 셋의 geometry_resolution_absolute
    """

    def __init__(self, *, length_scale: float = 1.0, faceting_tol: float = 1e-4, geom_tol: float = 1e-6):
        self.length_scale = float(length_scale)
        self.faceting_tol = float(faceting_tol)
        self.geom_tol = float(geom_tol)

    def write(
        self,
        sink: GeometrySink,
        mesh: MeshAccess,
        materials: Sequence[Material],
        regions: Sequence[Region],
        surfaces: ExtractionResult,
    ) -> TaggedGeometry:
        """
        Replace the sink's content with the tagged model.

        Raises:
            SinkWriteError: any sink failure; the sink is rolled back first
        """
        sink.begin()
        try:
            tagged = self._write(sink, mesh, materials, regions, surfaces)
        except SinkWriteError:
            sink.rollback()
            raise
        except Exception as e:
            sink.rollback()
            raise SinkWriteError(f"Geometry write failed: {type(e).__name__}: {e}") from e
        sink.commit()

        _LOGGER.info(
            "Tagged %d groups, %d volumes, %d surfaces",
            len(tagged.groups),
            len(tagged.volumes),
            len(tagged.surfaces),
        )
        return tagged

    def _write(self, sink, mesh, materials, regions, surfaces) -> TaggedGeometry:
        sink.clear()
        tagged = TaggedGeometry()

        root = sink.root_set()
        sink.set_tag(root, TAG_FACETING_TOL, self.faceting_tol)
        sink.set_tag(root, TAG_GEOM_RESABS, self.geom_tol)
        sink.set_tag(root, TAG_LENGTH_SCALE, self.length_scale)

        for mat in materials:
            gid = int(mat.index) + 1
            group = sink.create_entity_set()
            sink.set_tag(group, TAG_NAME, f"{GROUP_NAME_PREFIX}{mat.name}")
            sink.set_tag(group, TAG_CATEGORY, "Group")
            sink.set_tag(group, TAG_ID, gid)
            tagged.groups[gid] = group

        mat_names = {int(m.index): m.name for m in materials}
        for region in sorted(regions, key=lambda r: r.volume_id):
            vol = sink.create_entity_set()
            sink.set_tag(vol, TAG_CATEGORY, "Volume")
            sink.set_tag(vol, TAG_ID, int(region.volume_id))
            sink.set_tag(vol, TAG_GEOM_DIMENSION, 3)
            sink.set_tag(vol, TAG_MATERIAL, mat_names[int(region.material_index)])
            sink.add_to_set(tagged.groups[int(region.material_index) + 1], vol)
            tagged.volumes[int(region.volume_id)] = vol

        for patch in surfaces.patches:
            tagged.surfaces[patch.index] = self._write_surface(sink, mesh, patch, tagged.volumes)

        return tagged

    def _write_surface(self, sink, mesh, patch: SurfacePatch, volumes: dict[int, int]) -> int:
        surf = sink.create_entity_set()
        sink.set_tag(surf, TAG_CATEGORY, "Surface")
        sink.set_tag(surf, TAG_ID, int(patch.index))
        sink.set_tag(surf, TAG_GEOM_DIMENSION, 2)

        vertices, triangles = triangulate_faces(mesh, patch.faces, self.length_scale)
        sink.add_facets(surf, vertices, triangles)

        forward = volumes[patch.forward_volume]
        sink.add_parent_child(forward, surf)
        reverse = 0
        if patch.reverse_volume != EXTERIOR:
            reverse = volumes[patch.reverse_volume]
            sink.add_parent_child(reverse, surf)
        sink.set_sense(surf, forward, reverse)
        return surf
