"""
Write per-element results (e.g. transport tallies) back into the mesh store.
"""

from __future__ import annotations

import logging

import numpy as np

from .errors import ConfigError, TopologyError
from .volume_mesh import MeshAccess

_LOGGER = logging.getLogger(__name__)


def normalize_results(
    mesh: MeshAccess,
    results,
    *,
    scale_factor: float = 1.0,
    norm_to_vol: bool = True,
) -> np.ndarray:
    """
    Scale results and optionally divide by element volume.

    Args:
        mesh: 메쉬 접근 인터페이스
        results: ``mesh.element_ids()`` 순서의 요소별 결과
        scale_factor: 곱할 배율
        norm_to_vol: True면 요소 체적으로 나눔

    Raises:
        ConfigError: length mismatch or non-finite scale factor
        TopologyError: zero-volume element with ``norm_to_vol``
    """
    elem_ids = np.asarray(mesh.element_ids(), dtype=np.int64)
    values = np.asarray(results, dtype=np.float64).reshape(-1)
    if values.shape[0] != elem_ids.shape[0]:
        raise ConfigError(f"Got {values.shape[0]} results for {elem_ids.shape[0]} elements")
    if not np.isfinite(scale_factor):
        raise ConfigError(f"scale_factor must be finite, got {scale_factor!r}")

    out = values * float(scale_factor)
    if norm_to_vol:
        vols = np.fromiter((mesh.element_volume(int(e)) for e in elem_ids), dtype=np.float64, count=elem_ids.shape[0])
        bad = np.flatnonzero(vols <= 0.0)
        if bad.size:
            raise TopologyError(f"Element {int(elem_ids[bad[0]])} has non-positive volume {vols[bad[0]]!r}")
        out = out / vols
    return out


def set_solution(
    mesh: MeshAccess,
    var_name: str,
    results,
    *,
    scale_factor: float = 1.0,
    norm_to_vol: bool = True,
) -> np.ndarray:
    """Normalize ``results`` and store them as field ``var_name``."""
    values = normalize_results(mesh, results, scale_factor=scale_factor, norm_to_vol=norm_to_vol)
    mesh.set_field(var_name, values)
    _LOGGER.info("Stored %d values in field %r (scale=%g, norm_to_vol=%s)", values.shape[0], var_name, scale_factor, norm_to_vol)
    return values
