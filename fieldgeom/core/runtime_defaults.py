"""
Runtime defaults for pipeline runs.

Values can be overridden via environment variables so a host application can
tune tolerances without editing every config file.
"""

from __future__ import annotations

from dataclasses import dataclass
import os


ENV_FACETING_TOL = "FIELDGEOM_FACETING_TOL"
ENV_GEOM_TOL = "FIELDGEOM_GEOM_TOL"
ENV_LENGTH_SCALE = "FIELDGEOM_LENGTH_SCALE"
ENV_MAX_WORKERS = "FIELDGEOM_MAX_WORKERS"


@dataclass(frozen=True)
class RuntimeDefaults:
    faceting_tol: float
    geom_tol: float
    length_scale: float
    max_workers: int


def _read_int_env(
    env_name: str,
    default: int,
    *,
    min_value: int | None = None,
    max_value: int | None = None,
) -> int:
    raw = os.environ.get(env_name)
    if raw is None:
        return default
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        return default

    if min_value is not None and value < min_value:
        return default
    if max_value is not None and value > max_value:
        return default
    return value


def _read_float_env(
    env_name: str,
    default: float,
    *,
    min_value: float | None = None,
    max_value: float | None = None,
) -> float:
    raw = os.environ.get(env_name)
    if raw is None:
        return default
    try:
        value = float(str(raw).strip())
    except (TypeError, ValueError):
        return default

    if value != value:  # NaN
        return default
    if min_value is not None and value <= min_value:
        return default
    if max_value is not None and value > max_value:
        return default
    return value


def load_runtime_defaults() -> RuntimeDefaults:
    return RuntimeDefaults(
        faceting_tol=_read_float_env(ENV_FACETING_TOL, 1e-4, min_value=0.0, max_value=1e3),
        geom_tol=_read_float_env(ENV_GEOM_TOL, 1e-6, min_value=0.0, max_value=1e3),
        length_scale=_read_float_env(ENV_LENGTH_SCALE, 1.0, min_value=0.0, max_value=1e6),
        max_workers=_read_int_env(ENV_MAX_WORKERS, 1, min_value=1, max_value=256),
    )


DEFAULTS = load_runtime_defaults()
