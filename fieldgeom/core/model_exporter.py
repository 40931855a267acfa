"""
Geometry model file I/O (.fgz)

The model is a zip container with a JSON manifest (groups, volumes,
surfaces, senses, root tags) plus one binary PLY per surface. Surface
triangles are wound with their normal pointing out of the forward volume.
"""

from __future__ import annotations

from datetime import datetime, timezone
import io
import json
from pathlib import Path
from typing import Any
import zipfile

import numpy as np
import trimesh

from .geometry_sink import (
    MemoryGeometrySink,
    TAG_GEOM_DIMENSION,
    TAG_MATERIAL,
    TAG_NAME,
)


MODEL_FORMAT = "fieldgeom_geometry"
MODEL_VERSION = 1
MANIFEST_NAME = "geometry.json"
SURFACE_DIR = "surfaces"


class ModelFormatError(RuntimeError):
    pass


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def _surface_trimesh(sink: MemoryGeometrySink, handle: int) -> trimesh.Trimesh:
    ent = sink.entity_set(handle)
    vertices = ent.vertices if ent.vertices is not None else np.zeros((0, 3), dtype=np.float64)
    triangles = ent.triangles if ent.triangles is not None else np.zeros((0, 3), dtype=np.int64)
    return trimesh.Trimesh(vertices=vertices, faces=triangles, process=False)


def build_manifest(sink: MemoryGeometrySink, *, meta: dict[str, Any] | None = None) -> dict[str, Any]:
    """Describe the sink's groups, volumes and surfaces by their id tags."""
    surf_sets = sink.entity_sets("Surface")
    vol_sets = sink.entity_sets("Volume")
    handle_to_vol = {v.handle: int(v.gid) for v in vol_sets}

    surfaces = []
    vol_surfaces: dict[int, list[dict[str, int]]] = {int(v.gid): [] for v in vol_sets}
    for s in surf_sets:
        fwd, rev = sink.sense(s.handle)
        fwd_id = handle_to_vol[fwd]
        rev_id = handle_to_vol.get(rev, 0) if rev else 0
        surfaces.append(
            {
                "id": int(s.gid),
                "forward_volume": fwd_id,
                "reverse_volume": rev_id,
                "n_triangles": int(0 if s.triangles is None else s.triangles.shape[0]),
                "geometry_dimension": int(s.tags.get(TAG_GEOM_DIMENSION, 2)),
                "file": f"{SURFACE_DIR}/surface_{int(s.gid)}.ply",
            }
        )
        vol_surfaces[fwd_id].append({"id": int(s.gid), "sense": 1})
        if rev_id:
            vol_surfaces[rev_id].append({"id": int(s.gid), "sense": -1})

    volumes = [
        {
            "id": int(v.gid),
            "material": v.tags.get(TAG_MATERIAL),
            "geometry_dimension": int(v.tags.get(TAG_GEOM_DIMENSION, 3)),
            "surfaces": vol_surfaces[int(v.gid)],
        }
        for v in vol_sets
    ]

    groups = [
        {
            "id": int(g.gid),
            "name": g.tags.get(TAG_NAME),
            "volumes": sorted(handle_to_vol[h] for h in g.members if h in handle_to_vol),
        }
        for g in sink.entity_sets("Group")
    ]

    return {
        "format": MODEL_FORMAT,
        "version": MODEL_VERSION,
        "saved_at": _utc_now_iso(),
        "meta": dict(meta or {}),
        "root": sink.root_tags(),
        "groups": groups,
        "volumes": volumes,
        "surfaces": surfaces,
    }


def save_geometry(path: str | Path, sink: MemoryGeometrySink, *, meta: dict[str, Any] | None = None) -> str:
    """
    Save a geometry model file.

    Args:
        path: destination path (usually ends with .fgz)
        sink: populated geometry sink
        meta: optional metadata (e.g., source mesh, config)
    """
    out_path = Path(path)
    doc = build_manifest(sink, meta=meta)

    out_path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(out_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(MANIFEST_NAME, json.dumps(doc, ensure_ascii=False, indent=2).encode("utf-8"))
        for entry, s in zip(doc["surfaces"], sink.entity_sets("Surface")):
            data = _surface_trimesh(sink, s.handle).export(file_type="ply")
            zf.writestr(entry["file"], data)
    return str(out_path)


def load_geometry_manifest(path: str | Path) -> dict[str, Any]:
    """
    Load and check the manifest of a geometry model file.

    Raises:
        FileNotFoundError: missing file
        ModelFormatError: not a geometry model / unsupported version
    """
    in_path = Path(path)
    if not in_path.exists():
        raise FileNotFoundError(str(in_path))
    if not zipfile.is_zipfile(in_path):
        raise ModelFormatError(f"Not a zip container: {in_path}")

    with zipfile.ZipFile(in_path, "r") as zf:
        try:
            raw = zf.read(MANIFEST_NAME).decode("utf-8", errors="replace")
        except KeyError as e:
            raise ModelFormatError(f"Missing {MANIFEST_NAME} in model file") from e

    try:
        doc = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ModelFormatError(f"Invalid JSON: {e}") from e

    if not isinstance(doc, dict):
        raise ModelFormatError("Invalid model document (expected JSON object)")
    if str(doc.get("format", "")).strip() != MODEL_FORMAT:
        raise ModelFormatError(f"Unsupported model format: {doc.get('format')!r}")
    if doc.get("version") != MODEL_VERSION:
        raise ModelFormatError(f"Unsupported model version: {doc.get('version')!r}")
    for key in ("groups", "volumes", "surfaces"):
        if not isinstance(doc.get(key), list):
            raise ModelFormatError(f"Invalid model document: missing {key!r} list")
    return doc


def load_surface(path: str | Path, surface_id: int) -> trimesh.Trimesh:
    """Read one surface's triangles from a model file."""
    with zipfile.ZipFile(Path(path), "r") as zf:
        data = zf.read(f"{SURFACE_DIR}/surface_{int(surface_id)}.ply")
    return trimesh.load(io.BytesIO(data), file_type="ply", process=False)


def volume_surface_mesh(sink: MemoryGeometrySink, volume_id: int) -> trimesh.Trimesh:
    """
    Assemble a volume's bounding surfaces into one closed triangle mesh.

    Surfaces seen with reverse sense are flipped so every normal points out of
    the volume; coincident vertices are merged so watertightness can be
    checked with ``is_watertight``.
    """
    vol = sink.find("Volume", volume_id)
    parts = []
    for handle in vol.children:
        fwd, _rev = sink.sense(handle)
        mesh = _surface_trimesh(sink, handle)
        if fwd != vol.handle:
            mesh = trimesh.Trimesh(vertices=mesh.vertices, faces=mesh.faces[:, ::-1], process=False)
        parts.append(mesh)
    if not parts:
        return trimesh.Trimesh()
    combined = trimesh.util.concatenate(parts)
    combined.merge_vertices()
    return combined
