import json
import logging

import meshio
import numpy as np

import fieldgeom.core.logging_utils as logging_utils
from fieldgeom.core.model_exporter import load_geometry_manifest
from fieldgeom.core.volume_mesh import box_mesh
from main import run_cli


def _write_mesh(path):
    box = box_mesh((4, 1, 1))
    src = meshio.Mesh(
        points=box.nodes,
        cells=[("hexahedron", box.cells["hexahedron"])],
        cell_data={"temperature": [np.array([300.0, 320.0, 700.0, 720.0])]},
    )
    meshio.write(str(path), src)


def _no_file_logging(monkeypatch):
    monkeypatch.setattr(logging_utils, "setup_logging", lambda **kwargs: None)


def test_cli_builds_geometry_file(monkeypatch, tmp_path, capsys):
    _no_file_logging(monkeypatch)
    mesh_path = tmp_path / "rod.vtu"
    _write_mesh(mesh_path)
    cfg_path = tmp_path / "bins.json"
    cfg_path.write_text(json.dumps({"varMin": 250, "varMax": 750, "nVarBins": 2}), encoding="utf-8")
    out_path = tmp_path / "rod.fgz"

    code = run_cli([str(mesh_path), "--config", str(cfg_path), "--output", str(out_path)])

    assert code == 0
    doc = load_geometry_manifest(out_path)
    assert [v["id"] for v in doc["volumes"]] == [1, 2]
    assert sum(1 for s in doc["surfaces"] if s["reverse_volume"]) == 1
    assert doc["meta"]["config"]["n_var_bins"] == 2
    assert "Done!" in capsys.readouterr().out


def test_cli_reports_pipeline_errors(monkeypatch, tmp_path, capsys):
    _no_file_logging(monkeypatch)
    mesh_path = tmp_path / "rod.vtu"
    _write_mesh(mesh_path)
    cfg_path = tmp_path / "bins.json"
    cfg_path.write_text(json.dumps({"var_name": "pressure"}), encoding="utf-8")

    code = run_cli([str(mesh_path), "--config", str(cfg_path)])

    assert code == 1
    assert "ConfigError" in capsys.readouterr().out
    assert not (tmp_path / "rod.fgz").exists()


def test_cli_usage_errors(monkeypatch, tmp_path):
    _no_file_logging(monkeypatch)
    assert run_cli(["--help"]) == 0
    assert run_cli([str(tmp_path / "missing.msh")]) == 2
    assert run_cli(["--info"]) == 2

    mesh_path = tmp_path / "rod.vtu"
    _write_mesh(mesh_path)
    assert run_cli([str(mesh_path), "--bogus", "1"]) == 2
    assert run_cli(["--info", str(mesh_path)]) == 0


def test_setup_logging_writes_to_directory(monkeypatch, tmp_path):
    monkeypatch.delenv(logging_utils.ENV_LOG_LEVEL, raising=False)
    root = logging.getLogger()
    existing = [h for h in root.handlers if isinstance(h, logging.FileHandler)]
    for h in existing:
        root.removeHandler(h)
    try:
        path = logging_utils.setup_logging(log_dir=tmp_path, log_level="DEBUG")
        assert path == tmp_path / "fieldgeom.log"
        # idempotent
        assert logging_utils.setup_logging(log_dir=tmp_path / "other") == path
    finally:
        for h in [h for h in root.handlers if isinstance(h, logging.FileHandler)]:
            root.removeHandler(h)
            h.close()
        for h in existing:
            root.addHandler(h)


def test_cli_unit_sets_length_scale(monkeypatch, tmp_path):
    _no_file_logging(monkeypatch)
    mesh_path = tmp_path / "rod.vtu"
    _write_mesh(mesh_path)
    cfg_path = tmp_path / "bins.json"
    cfg_path.write_text(json.dumps({"varMin": 250, "varMax": 750, "nVarBins": 2}), encoding="utf-8")

    assert run_cli([str(mesh_path), "--config", str(cfg_path), "--unit", "m"]) == 0

    doc = load_geometry_manifest(tmp_path / "rod.fgz")
    assert doc["root"]["length_scale"] == 100.0
