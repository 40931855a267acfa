"""
Length unit helpers (mesh units -> geometry units)

Host meshes are commonly in metres while transport codes expect
centimetres. These helpers centralize the conversion so the config loader and
the CLI agree on the length scale written to the geometry.
"""

from __future__ import annotations

from typing import Optional

from .errors import ConfigError

DEFAULT_TARGET_UNIT = "cm"

_UNIT_IN_CM = {
    "mm": 0.1,
    "cm": 1.0,
    "m": 100.0,
}


def normalize_unit(unit: Optional[str]) -> str:
    u = str(unit or "").strip().lower()
    if u in {"mm", "millimeter", "millimeters", "millimetre", "millimetres"}:
        return "mm"
    if u in {"cm", "centimeter", "centimeters", "centimetre", "centimetres"}:
        return "cm"
    if u in {"m", "meter", "meters", "metre", "metres"}:
        return "m"
    raise ConfigError(f"Unknown length unit: {unit!r} (expected mm, cm or m)")


def length_scale(mesh_unit: Optional[str], target_unit: Optional[str] = None) -> float:
    """
    Returns:
        Multiplier applied to mesh coordinates to express them in ``target_unit``.
    """
    src = normalize_unit(mesh_unit or DEFAULT_TARGET_UNIT)
    dst = normalize_unit(target_unit or DEFAULT_TARGET_UNIT)
    return _UNIT_IN_CM[src] / _UNIT_IN_CM[dst]
