"""
Pipeline configuration.

A run is described by a frozen ``PipelineConfig``. It can be built in code or
read from a JSON file; keys may use the snake_case field names or the
camelCase names used by input decks (``nVarBins``, ``powMin`` ...).
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
import json
import logging
import math
from pathlib import Path
from typing import Any, Mapping

from .binning import DOMAIN_ERROR_POLICIES, MODE_DISABLED, BinningScheme
from .errors import ConfigError
from .runtime_defaults import DEFAULTS
from .unit_utils import length_scale as _length_scale

_LOGGER = logging.getLogger(__name__)

_KEY_ALIASES = {
    "binning": "mode",
    "bin_mode": "mode",
    "logscale": "mode",
    "varmin": "var_min",
    "varmax": "var_max",
    "nvarbins": "n_var_bins",
    "powmin": "pow_min",
    "powmax": "pow_max",
    "nminor": "n_minor",
    "varname": "var_name",
    "variable": "var_name",
    "var": "var_name",
    "lengthscale": "length_scale",
    "scale": "length_scale",
    "tol": "faceting_tol",
    "facetingtol": "faceting_tol",
    "geomtol": "geom_tol",
    "ondomainerror": "on_domain_error",
    "maxworkers": "max_workers",
    "meshunit": "mesh_unit",
    "targetunit": "target_unit",
}

_SCHEME_KEYS = ("mode", "var_min", "var_max", "n_var_bins", "pow_min", "pow_max", "n_minor")


def _canonical_key(key: str) -> str:
    k = str(key).strip()
    flat = k.replace("_", "").lower()
    return _KEY_ALIASES.get(flat, k)


@dataclass(frozen=True)
class PipelineConfig:
    """
    파이프라인 설정

    Attributes:
        binning: 결과값 구간 설정
        var_name: 구간화할 요소 결과 변수 이름
        length_scale: 메쉬 좌표 -> 출력 좌표 배율
        faceting_tol: faceting_tolerance 태그 값
        geom_tol: geometry_resolution_absolute 태그 값
        on_domain_error: 'raise' | 'skip' | 'clamp'
        max_workers: 구간별 영역 탐색 스레드 수
    """
    binning: BinningScheme = field(default_factory=BinningScheme)
    var_name: str = "temperature"
    length_scale: float = DEFAULTS.length_scale
    faceting_tol: float = DEFAULTS.faceting_tol
    geom_tol: float = DEFAULTS.geom_tol
    on_domain_error: str = "raise"
    max_workers: int = DEFAULTS.max_workers

    def validate(self) -> "PipelineConfig":
        self.binning.validate()
        if self.binning.mode != MODE_DISABLED and not str(self.var_name).strip():
            raise ConfigError("var_name is required when binning is enabled")
        for name in ("length_scale", "faceting_tol", "geom_tol"):
            value = float(getattr(self, name))
            if not math.isfinite(value) or value <= 0.0:
                raise ConfigError(f"{name} must be a positive number, got {value!r}")
        if self.on_domain_error not in DOMAIN_ERROR_POLICIES:
            raise ConfigError(
                f"on_domain_error must be one of {DOMAIN_ERROR_POLICIES}, got {self.on_domain_error!r}"
            )
        if int(self.max_workers) < 1:
            raise ConfigError(f"max_workers must be >= 1, got {self.max_workers}")
        return self

    def with_overrides(self, **changes: Any) -> "PipelineConfig":
        return replace(self, **changes)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PipelineConfig":
        """
        Build a config from a flat or nested mapping.

        A nested ``"binning": {...}`` object is accepted as well as flat keys.
        ``mesh_unit`` / ``target_unit`` derive ``length_scale`` unless it is
        given explicitly.

        Raises:
            ConfigError: unknown keys or values of the wrong type
        """
        if not isinstance(data, Mapping):
            raise ConfigError("Config must be a JSON object")

        flat: dict[str, Any] = {}
        for key, value in data.items():
            ck = _canonical_key(key)
            if ck == "mode" and isinstance(value, Mapping):
                for k2, v2 in value.items():
                    flat[_canonical_key(k2)] = v2
            else:
                flat[ck] = value

        # logscale: true/false as in older input decks
        if isinstance(flat.get("mode"), bool):
            flat["mode"] = "log" if flat["mode"] else "linear"

        scheme_args = {k: flat.pop(k) for k in _SCHEME_KEYS if k in flat}
        mesh_unit = flat.pop("mesh_unit", None)
        target_unit = flat.pop("target_unit", None)

        known = {"var_name", "length_scale", "faceting_tol", "geom_tol", "on_domain_error", "max_workers"}
        unknown = sorted(set(flat) - known)
        if unknown:
            raise ConfigError(f"Unknown config keys: {unknown}")

        try:
            for k in ("var_min", "var_max"):
                if k in scheme_args:
                    scheme_args[k] = float(scheme_args[k])
            for k in ("n_var_bins", "pow_min", "pow_max", "n_minor"):
                if k in scheme_args:
                    scheme_args[k] = int(scheme_args[k])
            scheme = BinningScheme(**scheme_args)

            kwargs: dict[str, Any] = {"binning": scheme}
            if "var_name" in flat:
                kwargs["var_name"] = str(flat["var_name"])
            if "length_scale" in flat:
                kwargs["length_scale"] = float(flat["length_scale"])
            elif mesh_unit is not None or target_unit is not None:
                kwargs["length_scale"] = _length_scale(mesh_unit, target_unit)
            for k in ("faceting_tol", "geom_tol"):
                if k in flat:
                    kwargs[k] = float(flat[k])
            if "on_domain_error" in flat:
                kwargs["on_domain_error"] = str(flat["on_domain_error"]).strip().lower()
            if "max_workers" in flat:
                kwargs["max_workers"] = int(flat["max_workers"])
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid config value: {e}") from e

        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        b = self.binning
        return {
            "mode": b.mode,
            "var_min": b.var_min,
            "var_max": b.var_max,
            "n_var_bins": b.n_var_bins,
            "pow_min": b.pow_min,
            "pow_max": b.pow_max,
            "n_minor": b.n_minor,
            "var_name": self.var_name,
            "length_scale": self.length_scale,
            "faceting_tol": self.faceting_tol,
            "geom_tol": self.geom_tol,
            "on_domain_error": self.on_domain_error,
            "max_workers": self.max_workers,
        }


def load_config(path: str | Path) -> PipelineConfig:
    """
    Load and validate a JSON config file.

    Raises:
        FileNotFoundError: missing file
        ConfigError: invalid JSON or settings
    """
    in_path = Path(path)
    if not in_path.exists():
        raise FileNotFoundError(str(in_path))

    raw = in_path.read_text(encoding="utf-8", errors="replace")
    try:
        doc = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {in_path}: {e}") from e

    config = PipelineConfig.from_dict(doc).validate()
    _LOGGER.debug("Loaded config %s: %s", in_path, config.to_dict())
    return config
