import unittest

import numpy as np

from fieldgeom.core.errors import TopologyError
from fieldgeom.core.region_builder import Region, RegionBuilder
from fieldgeom.core.surface_extractor import (
    EXTERIOR,
    SENSE_FORWARD,
    SENSE_REVERSE,
    SurfaceExtractor,
    build_face_table,
)
from fieldgeom.core.volume_mesh import MeshAccess, box_mesh


def _split_cube(cell_type="hexahedron"):
    """2x2x2 cube with a field equal to the element centroid's x."""
    mesh = box_mesh((2, 2, 2), cell_type=cell_type)
    conn = mesh.cells[cell_type]
    mesh.fields["temperature"] = mesh.nodes[conn].mean(axis=1)[:, 0]
    return mesh


def _split_cube_regions(mesh):
    x = mesh.field_values("temperature")
    ids = mesh.element_ids()
    bins = [ids[x < 1.0], ids[x >= 1.0]]
    return RegionBuilder().build(bins, mesh, 2)


class _StubMesh(MeshAccess):
    """Hand-written topology for cases a real mesh cannot produce."""

    def __init__(self, faces_by_elem):
        self._faces = {int(k): [tuple(f) for f in v] for k, v in faces_by_elem.items()}

    def element_ids(self):
        return np.asarray(sorted(self._faces), dtype=np.int64)

    def element_nodes(self, elem_id):
        return np.asarray(sorted({n for f in self._faces[int(elem_id)] for n in f}), dtype=np.int64)

    def element_block(self, elem_id):
        return 0

    def element_volume(self, elem_id):
        return 1.0

    def element_faces(self, elem_id):
        return list(self._faces[int(elem_id)])

    def face_neighbors(self, elem_id):
        mine = {tuple(sorted(f)) for f in self._faces[int(elem_id)]}
        out = [
            e for e, faces in self._faces.items()
            if e != int(elem_id) and mine & {tuple(sorted(f)) for f in faces}
        ]
        return np.asarray(sorted(out), dtype=np.int64)

    def node_coords(self, node_ids):
        return np.zeros((len(node_ids), 3))

    def field_values(self, var_name):
        return np.zeros(len(self._faces))

    def block_materials(self):
        return {0: "stub"}


class TestBoundaryFaces(unittest.TestCase):
    def test_single_hex_has_six_exterior_faces_in_one_patch(self):
        mesh = box_mesh((1, 1, 1))
        region = Region(volume_id=1, material_index=0, var_bin=0, elements=np.array([0]))

        result = SurfaceExtractor(mesh).extract([region])

        self.assertEqual(len(result.patches), 1)
        patch = result.patches[0]
        self.assertTrue(patch.is_exterior)
        self.assertEqual(patch.n_faces, 6)
        self.assertEqual(patch.sense_for(1), SENSE_FORWARD)
        with self.assertRaises(KeyError):
            patch.sense_for(EXTERIOR)

    def test_boundary_matches_face_owner_count(self):
        mesh = _split_cube("tetra")
        regions = _split_cube_regions(mesh)
        elem_to_volume = {int(e): r.volume_id for r in regions for e in r.elements}
        table = build_face_table(mesh)
        extractor = SurfaceExtractor(mesh)

        for region in regions:
            members = set(region.elements.tolist())
            expected = {
                key for key, owners in table.items()
                if sum(1 for o in owners if o in members) == 1
            }
            got = [key for key, _face, _nbr in extractor.boundary_faces(region, elem_to_volume)]
            self.assertEqual(len(got), len(set(got)))
            self.assertEqual(set(got), expected)

    def test_boundary_faces_are_idempotent(self):
        mesh = _split_cube()
        regions = _split_cube_regions(mesh)
        elem_to_volume = {int(e): r.volume_id for r in regions for e in r.elements}
        extractor = SurfaceExtractor(mesh)

        first = extractor.boundary_faces(regions[0], elem_to_volume)
        second = extractor.boundary_faces(regions[0], elem_to_volume)
        self.assertEqual(first, second)
        self.assertEqual(first, SurfaceExtractor(mesh).boundary_faces(regions[0], elem_to_volume))


class TestSurfaceExtraction(unittest.TestCase):
    def test_split_cube_shares_one_interface(self):
        mesh = _split_cube()
        regions = _split_cube_regions(mesh)
        self.assertEqual([r.elements.tolist() for r in regions], [[0, 2, 4, 6], [1, 3, 5, 7]])

        result = SurfaceExtractor(mesh).extract(regions)

        self.assertEqual(len(result.patches), 3)
        interior = [p for p in result.patches if not p.is_exterior]
        self.assertEqual(len(interior), 1)
        shared = interior[0]
        self.assertEqual((shared.forward_volume, shared.reverse_volume), (1, 2))
        self.assertEqual(shared.n_faces, 4)
        self.assertEqual(shared.sense_for(1), SENSE_FORWARD)
        self.assertEqual(shared.sense_for(2), SENSE_REVERSE)

        # interface faces lie on x == 1 and point from volume 1 into volume 2
        for face in shared.faces:
            pts = mesh.node_coords(list(face))
            np.testing.assert_allclose(pts[:, 0], 1.0)
            normal = np.cross(pts[1] - pts[0], pts[2] - pts[0])
            self.assertGreater(normal[0], 0.0)

        for vol in (1, 2):
            entries = result.surfaces_of(vol)
            self.assertEqual(len(entries), 2)
            self.assertIn((shared, shared.sense_for(vol)), entries)
            ext = [p for p, _s in entries if p.is_exterior]
            self.assertEqual(len(ext), 1)
            self.assertEqual(ext[0].n_faces, 12)

    def test_each_face_in_exactly_one_patch(self):
        mesh = _split_cube("tetra")
        regions = _split_cube_regions(mesh)
        result = SurfaceExtractor(mesh).extract(regions)

        seen = set()
        for patch in result.patches:
            keys = patch.face_keys
            self.assertFalse(seen & keys)
            seen |= keys
        # 2x2x2 cube: 24 outer quads -> 48 triangles, plus 4 interface quads -> 8
        self.assertEqual(len(seen), 56)

    def test_extraction_is_deterministic(self):
        mesh = _split_cube("tetra")
        regions = _split_cube_regions(mesh)
        a = SurfaceExtractor(mesh).extract(regions)
        b = SurfaceExtractor(mesh).extract(list(reversed(regions)))
        self.assertEqual(
            [(p.index, p.forward_volume, p.reverse_volume, p.faces) for p in a.patches],
            [(p.index, p.forward_volume, p.reverse_volume, p.faces) for p in b.patches],
        )
        self.assertEqual(a.volume_surfaces, b.volume_surfaces)

    def test_enclosed_region_gets_separate_patches(self):
        mesh = box_mesh((3, 3, 3))
        center = 13
        outer = np.array([e for e in range(27) if e != center])
        regions = RegionBuilder().build([outer, np.array([center])], mesh, 2)

        result = SurfaceExtractor(mesh).extract(regions)

        inner = [p for p in result.patches if not p.is_exterior]
        self.assertEqual(len(inner), 1)
        self.assertEqual(inner[0].n_faces, 6)
        self.assertEqual((inner[0].forward_volume, inner[0].reverse_volume), (1, 2))
        self.assertEqual(len(result.surfaces_of(2)), 1)
        self.assertEqual(result.surfaces_of(2)[0][1], SENSE_REVERSE)

    def test_skipped_neighbours_count_as_exterior(self):
        mesh = box_mesh((2, 1, 1))
        region = Region(volume_id=1, material_index=0, var_bin=0, elements=np.array([1]))
        result = SurfaceExtractor(mesh).extract([region])
        self.assertEqual(len(result.patches), 1)
        self.assertTrue(result.patches[0].is_exterior)
        self.assertEqual(result.patches[0].n_faces, 6)


class TestTopologyErrors(unittest.TestCase):
    def test_region_without_boundary(self):
        faces = [(0, 1, 2), (0, 2, 3), (0, 3, 1), (1, 3, 2)]
        mesh = _StubMesh({0: faces, 1: [f[::-1] for f in faces]})
        region = Region(volume_id=1, material_index=0, var_bin=0, elements=np.array([0, 1]))
        with self.assertRaises(TopologyError):
            SurfaceExtractor(mesh).extract([region])

    def test_non_manifold_face(self):
        shared = (0, 1, 2)
        mesh = _StubMesh({0: [shared], 1: [shared[::-1]], 2: [shared]})
        with self.assertRaises(TopologyError):
            build_face_table(mesh)

    def test_non_manifold_face_in_volume_mesh(self):
        mesh = box_mesh((2, 1, 1))
        conn = mesh.cells["hexahedron"]
        # a third hex glued onto the face shared by the first two
        nodes = np.vstack([mesh.nodes, mesh.nodes[conn[0, [0, 3, 4, 7]]] + [0.0, 0.0, 5.0]])
        n = mesh.nodes.shape[0]
        third = [conn[0, 1], n, n + 1, conn[0, 2], conn[0, 5], n + 2, n + 3, conn[0, 6]]
        bad = type(mesh)(nodes=nodes, cells={"hexahedron": np.vstack([conn, third])})
        with self.assertRaises(TopologyError):
            _ = bad.adjacency


if __name__ == "__main__":
    unittest.main()
