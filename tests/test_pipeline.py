import unittest

import numpy as np

from fieldgeom.core.binning import BinningScheme
from fieldgeom.core.config import PipelineConfig
from fieldgeom.core.errors import (
    ConfigError,
    DomainError,
    PipelineBusyError,
    SinkWriteError,
    TopologyError,
)
from fieldgeom.core.geometry_sink import (
    TAG_FACETING_TOL,
    TAG_GEOM_DIMENSION,
    TAG_GEOM_RESABS,
    TAG_LENGTH_SCALE,
    TAG_MATERIAL,
    TAG_NAME,
    MemoryGeometrySink,
)
from fieldgeom.core.model_exporter import build_manifest, volume_surface_mesh
from fieldgeom.core.pipeline import FieldGeometryPipeline
from fieldgeom.core.volume_mesh import VolumeMesh, box_mesh
from tests.test_surface_extractor import _StubMesh, _split_cube


def _two_bin_config(**overrides):
    scheme = BinningScheme(mode="linear", var_min=0.0, var_max=2.0, n_var_bins=2)
    return PipelineConfig(binning=scheme, var_name="temperature", **overrides)


def _id_view(sink):
    doc = build_manifest(sink)
    return doc["root"], doc["groups"], doc["volumes"], doc["surfaces"]


class _FailingSink(MemoryGeometrySink):
    fail = False

    def add_facets(self, handle, vertices, triangles):
        if self.fail:
            raise SinkWriteError("disk full")
        super().add_facets(handle, vertices, triangles)


class TestFieldGeometryPipeline(unittest.TestCase):
    def test_split_cube_end_to_end(self):
        mesh = _split_cube()
        sink = MemoryGeometrySink()

        result = FieldGeometryPipeline(mesh, sink, _two_bin_config()).update()

        self.assertEqual(result.n_volumes, 2)
        self.assertEqual(result.n_surfaces, 3)
        self.assertEqual(len(sink.entity_sets("Group")), 1)
        self.assertEqual([v.gid for v in sink.entity_sets("Volume")], [1, 2])
        self.assertEqual([s.gid for s in sink.entity_sets("Surface")], [1, 2, 3])

        group = sink.find("Group", 1)
        self.assertEqual(group.tags[TAG_NAME], "mat:block_0")
        self.assertEqual(sorted(group.members), sorted(result.tagged.volumes.values()))

        for v in sink.entity_sets("Volume"):
            self.assertEqual(v.tags[TAG_GEOM_DIMENSION], 3)
            self.assertEqual(v.tags[TAG_MATERIAL], "block_0")
            self.assertEqual(len(v.children), 2)
        for s in sink.entity_sets("Surface"):
            self.assertEqual(s.tags[TAG_GEOM_DIMENSION], 2)

        shared = [s for s in sink.entity_sets("Surface") if sink.sense(s.handle)[1] != 0]
        self.assertEqual(len(shared), 1)
        fwd, rev = sink.sense(shared[0].handle)
        self.assertEqual(fwd, sink.find("Volume", 1).handle)
        self.assertEqual(rev, sink.find("Volume", 2).handle)
        self.assertEqual(sorted(shared[0].parents), sorted([fwd, rev]))

        root = sink.root_tags()
        self.assertEqual(root[TAG_FACETING_TOL], 1e-4)
        self.assertEqual(root[TAG_GEOM_RESABS], 1e-6)
        self.assertEqual(root[TAG_LENGTH_SCALE], 1.0)

    def test_volumes_are_closed_and_outward(self):
        for cell_type in ("hexahedron", "tetra"):
            with self.subTest(cell_type=cell_type):
                mesh = _split_cube(cell_type)
                sink = MemoryGeometrySink()
                FieldGeometryPipeline(mesh, sink, _two_bin_config()).update()

                for vol_id in (1, 2):
                    closed = volume_surface_mesh(sink, vol_id)
                    self.assertTrue(closed.is_watertight)
                    self.assertTrue(closed.is_winding_consistent)
                    self.assertAlmostEqual(float(closed.volume), 4.0, places=9)

    def test_length_scale_is_applied(self):
        mesh = _split_cube()
        sink = MemoryGeometrySink()
        FieldGeometryPipeline(mesh, sink, _two_bin_config(length_scale=100.0)).update()

        closed = volume_surface_mesh(sink, 1)
        self.assertAlmostEqual(float(closed.volume), 4.0e6, delta=1e-3)
        self.assertEqual(sink.root_tags()[TAG_LENGTH_SCALE], 100.0)

    def test_ids_are_identical_across_runs(self):
        mesh = _split_cube("tetra")
        config = _two_bin_config()

        a = MemoryGeometrySink()
        b = MemoryGeometrySink()
        ra = FieldGeometryPipeline(mesh, a, config).update()
        rb = FieldGeometryPipeline(mesh, b, config).update()

        self.assertEqual(ra.tagged.id_signature, rb.tagged.id_signature)
        self.assertEqual(_id_view(a), _id_view(b))

    def test_rerun_replaces_previous_geometry(self):
        mesh = _split_cube()
        sink = MemoryGeometrySink()
        pipeline = FieldGeometryPipeline(mesh, sink, _two_bin_config())
        pipeline.update()

        mesh.fields["temperature"] = np.full(mesh.n_elements, 0.5)
        result = pipeline.update()

        self.assertEqual(result.n_volumes, 1)
        self.assertEqual([v.gid for v in sink.entity_sets("Volume")], [1])
        self.assertEqual([s.gid for s in sink.entity_sets("Surface")], [1])

    def test_sink_failure_rolls_back(self):
        mesh = _split_cube()
        sink = _FailingSink()
        pipeline = FieldGeometryPipeline(mesh, sink, _two_bin_config())
        pipeline.update()
        before = _id_view(sink)

        sink.fail = True
        with self.assertRaises(SinkWriteError):
            pipeline.update()

        self.assertFalse(sink.in_transaction)
        self.assertEqual(_id_view(sink), before)

    def test_domain_error_leaves_sink_untouched(self):
        mesh = _split_cube()
        mesh.fields["temperature"][3] = -1.0
        sink = MemoryGeometrySink()
        config = PipelineConfig(binning=BinningScheme(mode="log", pow_min=0, pow_max=2, n_minor=1))

        with self.assertRaises(DomainError):
            FieldGeometryPipeline(mesh, sink, config).update()
        self.assertEqual(sink.entity_sets("Volume"), [])

    def test_skip_policy_treats_skipped_elements_as_exterior(self):
        mesh = box_mesh((2, 1, 1))
        mesh.fields["temperature"] = np.array([0.0, 5.0])
        sink = MemoryGeometrySink()
        config = PipelineConfig(
            binning=BinningScheme(mode="log", pow_min=0, pow_max=1, n_minor=1),
            on_domain_error="skip",
        )

        result = FieldGeometryPipeline(mesh, sink, config).update()

        self.assertEqual(result.n_volumes, 1)
        self.assertEqual(result.n_surfaces, 1)
        self.assertEqual(sink.sense(sink.find("Surface", 1).handle)[1], 0)
        self.assertTrue(volume_surface_mesh(sink, 1).is_watertight)

    def test_disjoint_elements_in_one_bin_are_closed_separately(self):
        cube = box_mesh((1, 1, 1))
        conn = cube.cells["hexahedron"]
        mesh = VolumeMesh(
            nodes=np.vstack([cube.nodes, cube.nodes + [3.0, 0.0, 0.0]]),
            cells={"hexahedron": np.vstack([conn, conn + 8])},
            fields={"temperature": np.array([0.5, 0.5])},
        )
        sink = MemoryGeometrySink()

        result = FieldGeometryPipeline(mesh, sink, _two_bin_config()).update()

        self.assertEqual(result.n_volumes, 2)
        self.assertEqual(result.n_surfaces, 2)
        for vol_id in (1, 2):
            vol = sink.find("Volume", vol_id)
            self.assertEqual(len(vol.children), 1)
            self.assertEqual(sink.sense(vol.children[0]), (vol.handle, 0))
            closed = volume_surface_mesh(sink, vol_id)
            self.assertTrue(closed.is_watertight)
            self.assertAlmostEqual(float(closed.volume), 1.0, places=9)

    def test_disabled_binning_gives_one_volume_per_material_block(self):
        mesh = box_mesh((4, 1, 1))
        mesh.blocks[:] = [7, 7, 9, 9]
        mesh.block_names = {7: "fuel", 9: "water"}
        sink = MemoryGeometrySink()

        result = FieldGeometryPipeline(mesh, sink, PipelineConfig(binning=BinningScheme(mode="disabled"))).update()

        self.assertEqual([m.name for m in result.materials], ["fuel", "water"])
        self.assertEqual(result.n_volumes, 2)
        self.assertEqual([g.tags[TAG_NAME] for g in sink.entity_sets("Group")], ["mat:fuel", "mat:water"])
        self.assertEqual(
            [v.tags[TAG_MATERIAL] for v in sink.entity_sets("Volume")],
            ["fuel", "water"],
        )

    def test_missing_field_is_a_config_error(self):
        mesh = box_mesh((1, 1, 1))
        with self.assertRaises(ConfigError):
            FieldGeometryPipeline(mesh, MemoryGeometrySink(), _two_bin_config()).update()

    def test_topology_error_leaves_sink_untouched(self):
        faces = [(0, 1, 2), (0, 2, 3), (0, 3, 1), (1, 3, 2)]
        mesh = _StubMesh({0: faces, 1: [f[::-1] for f in faces]})
        sink = MemoryGeometrySink()
        config = PipelineConfig(binning=BinningScheme(mode="disabled"))
        with self.assertRaises(TopologyError):
            FieldGeometryPipeline(mesh, sink, config).update()
        self.assertEqual(sink.entity_sets("Volume"), [])

    def test_concurrent_update_is_rejected(self):
        pipeline = FieldGeometryPipeline(_split_cube(), MemoryGeometrySink(), _two_bin_config())
        pipeline._lock.acquire()
        try:
            with self.assertRaises(PipelineBusyError):
                pipeline.update()
        finally:
            pipeline._lock.release()
        self.assertEqual(pipeline.update().n_volumes, 2)

    def test_set_solution_then_update(self):
        mesh = box_mesh((2, 1, 1), spacing=2.0)
        pipeline = FieldGeometryPipeline(mesh, MemoryGeometrySink(), PipelineConfig(
            binning=BinningScheme(mode="linear", var_min=0.0, var_max=2.0, n_var_bins=2),
            var_name="heating",
        ))
        stored = pipeline.set_solution("heating", [4.0, 12.0], scale_factor=1.0, norm_to_vol=True)
        np.testing.assert_allclose(stored, [0.5, 1.5])

        result = pipeline.update()
        self.assertEqual(result.n_volumes, 2)


if __name__ == "__main__":
    unittest.main()
