"""
Surface Extractor Module
표면 추출 - 영역 경계면을 찾아 인접 영역별 표면 패치로 분리

A face is on a region's boundary when exactly one of its owners is in the
region. Boundary faces are grouped into patches that are edge-connected and
all border the same neighbour (another volume, or the exterior).

Sense convention: patch faces are wound so their normals point out of the
volume that created the patch. That volume sees the patch with FORWARD sense,
the neighbour volume (if any) with REVERSE sense.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
import logging
from typing import Sequence

import numpy as np

from .errors import TopologyError
from .region_builder import Region
from .volume_mesh import MeshAccess

_LOGGER = logging.getLogger(__name__)

SENSE_FORWARD = 1
SENSE_REVERSE = -1

EXTERIOR = 0

FaceKey = tuple[int, ...]


@dataclass
class SurfacePatch:
    """
    표면 패치

    Attributes:
        index: 추출 순서 (1부터)
        forward_volume: 면 법선이 바깥을 향하는 볼륨 ID
        reverse_volume: 반대편 볼륨 ID (외부면이면 0)
        faces: 방향이 맞춰진 면 절점 튜플 목록
    """
    index: int
    forward_volume: int
    reverse_volume: int
    faces: list[tuple[int, ...]] = field(default_factory=list)

    @property
    def is_exterior(self) -> bool:
        return self.reverse_volume == EXTERIOR

    @property
    def n_faces(self) -> int:
        return len(self.faces)

    @property
    def face_keys(self) -> frozenset[FaceKey]:
        return frozenset(tuple(sorted(f)) for f in self.faces)

    def sense_for(self, volume_id: int) -> int:
        if int(volume_id) == self.forward_volume:
            return SENSE_FORWARD
        if int(volume_id) == self.reverse_volume and not self.is_exterior:
            return SENSE_REVERSE
        raise KeyError(f"Surface {self.index} does not bound volume {volume_id}")


@dataclass
class ExtractionResult:
    patches: list[SurfacePatch]
    # volume ID -> [(patch index, sense)] in extraction order
    volume_surfaces: dict[int, list[tuple[int, int]]]

    def patch(self, index: int) -> SurfacePatch:
        return self.patches[int(index) - 1]

    def surfaces_of(self, volume_id: int) -> list[tuple[SurfacePatch, int]]:
        return [(self.patch(i), s) for i, s in self.volume_surfaces.get(int(volume_id), [])]


def build_face_table(mesh: MeshAccess) -> dict[FaceKey, list[int]]:
    """
    Face key (sorted node IDs) -> owning element IDs.

    Raises:
        TopologyError: a face owned by more than two elements
    """
    table: dict[FaceKey, list[int]] = {}
    for elem_id in mesh.element_ids():
        e = int(elem_id)
        for face in mesh.element_faces(e):
            key = tuple(sorted(face))
            owners = table.setdefault(key, [])
            owners.append(e)
            if len(owners) > 2:
                raise TopologyError(f"Non-manifold face {list(key)} shared by elements {owners}")
    return table


def _face_edges(face: Sequence[int]) -> list[tuple[int, int]]:
    n = len(face)
    edges = []
    for i in range(n):
        a = int(face[i])
        b = int(face[(i + 1) % n])
        edges.append((a, b) if a < b else (b, a))
    return edges


class SurfaceExtractor:
    """
    영역 경계면 추출기

    The face table is built once per extractor; create a new extractor for
    each pipeline run.
    """

    def __init__(self, mesh: MeshAccess):
        self.mesh = mesh
        self._face_table: dict[FaceKey, list[int]] | None = None

    @property
    def face_table(self) -> dict[FaceKey, list[int]]:
        if self._face_table is None:
            self._face_table = build_face_table(self.mesh)
            _LOGGER.debug("Face table: %d unique faces", len(self._face_table))
        return self._face_table

    def boundary_faces(
        self,
        region: Region,
        elem_to_volume: dict[int, int],
    ) -> list[tuple[FaceKey, tuple[int, ...], int]]:
        """
        경계면 목록

        Returns:
            (face key, outward-wound face, neighbour volume ID or 0) sorted by key.
        """
        assert region.n_elements > 0, f"volume {region.volume_id} has no elements"

        members = set(int(e) for e in region.elements)
        table = self.face_table
        out: list[tuple[FaceKey, tuple[int, ...], int]] = []

        for elem in region.elements:
            e = int(elem)
            for face in self.mesh.element_faces(e):
                key = tuple(sorted(face))
                owners = table[key]
                if len(owners) == 1:
                    out.append((key, tuple(face), EXTERIOR))
                    continue
                other = owners[0] if owners[1] == e else owners[1]
                if other in members:
                    continue
                # Elements outside every region (skipped values) count as exterior.
                out.append((key, tuple(face), int(elem_to_volume.get(other, EXTERIOR))))

        out.sort(key=lambda item: item[0])
        return out

    def group_patches(
        self,
        faces: Sequence[tuple[FaceKey, tuple[int, ...], int]],
    ) -> list[tuple[int, list[tuple[int, ...]]]]:
        """
        Group boundary faces into edge-connected patches with a common neighbour.

        Returns:
            (neighbour volume ID, faces) per patch, seeded in face-key order.
        """
        edge_to_faces: dict[tuple[int, int], list[int]] = {}
        for fi, (_key, face, _nbr) in enumerate(faces):
            for edge in _face_edges(face):
                edge_to_faces.setdefault(edge, []).append(fi)

        visited = np.zeros(len(faces), dtype=bool)
        patches: list[tuple[int, list[tuple[int, ...]]]] = []

        for start in range(len(faces)):
            if visited[start]:
                continue

            nbr = faces[start][2]
            component = [start]
            visited[start] = True
            queue = deque([start])

            while queue:
                fi = queue.popleft()
                for edge in _face_edges(faces[fi][1]):
                    for other in edge_to_faces[edge]:
                        if not visited[other] and faces[other][2] == nbr:
                            visited[other] = True
                            component.append(other)
                            queue.append(other)

            component.sort()
            patches.append((nbr, [faces[fi][1] for fi in component]))

        return patches

    def extract(self, regions: Sequence[Region]) -> ExtractionResult:
        """
        Extract the surface patches of every region.

        Regions are processed in volume-ID order. A patch between two volumes is
        created by the lower ID and reused, with reverse sense, by the higher.

        Raises:
            TopologyError: a region with no boundary faces
        """
        ordered = sorted(regions, key=lambda r: r.volume_id)
        elem_to_volume: dict[int, int] = {}
        for region in ordered:
            for e in region.elements:
                elem_to_volume[int(e)] = int(region.volume_id)

        patches: list[SurfacePatch] = []
        volume_surfaces: dict[int, list[tuple[int, int]]] = {int(r.volume_id): [] for r in ordered}

        for region in ordered:
            vol = int(region.volume_id)
            faces = self.boundary_faces(region, elem_to_volume)
            if not faces:
                raise TopologyError(
                    f"Volume {vol} (material {region.material_index}, bin {region.var_bin}) has no boundary faces"
                )

            # Only patches toward the exterior or a higher volume are new.
            fresh = [f for f in faces if f[2] == EXTERIOR or f[2] > vol]
            for nbr, patch_faces in self.group_patches(fresh):
                patch = SurfacePatch(
                    index=len(patches) + 1,
                    forward_volume=vol,
                    reverse_volume=int(nbr),
                    faces=patch_faces,
                )
                patches.append(patch)
                volume_surfaces[vol].append((patch.index, SENSE_FORWARD))
                if nbr != EXTERIOR:
                    volume_surfaces[int(nbr)].append((patch.index, SENSE_REVERSE))

            _LOGGER.debug("Volume %d: %d boundary faces, %d surfaces", vol, len(faces), len(volume_surfaces[vol]))

        _LOGGER.info("Extracted %d surfaces for %d volumes", len(patches), len(ordered))
        return ExtractionResult(patches=patches, volume_surfaces=volume_surfaces)
