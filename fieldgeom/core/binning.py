"""
Element Binning Module
요소 분류 - 재질 및 결과값 구간(bin)별 요소 정렬

Maps each element to a flattened ``material_index * n_bins + value_bin`` slot
using linear, logarithmic or no value binning.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import math
import sys
from typing import Sequence

import numpy as np

from .errors import ConfigError, DomainError, TopologyError
from .logging_utils import log_once
from .volume_mesh import MeshAccess, Material

_LOGGER = logging.getLogger(__name__)

MODE_LINEAR = "linear"
MODE_LOG = "log"
MODE_DISABLED = "disabled"

_MODE_ALIASES = {
    "linear": MODE_LINEAR,
    "lin": MODE_LINEAR,
    "log": MODE_LOG,
    "logarithmic": MODE_LOG,
    "disabled": MODE_DISABLED,
    "none": MODE_DISABLED,
    "off": MODE_DISABLED,
}

DOMAIN_ERROR_POLICIES = ("raise", "skip", "clamp")


def normalize_mode(mode: str | None) -> str:
    key = str(mode or "").strip().lower()
    if key not in _MODE_ALIASES:
        raise ConfigError(f"Unknown binning mode: {mode!r} (expected linear, log or disabled)")
    return _MODE_ALIASES[key]


@dataclass(frozen=True)
class BinningScheme:
    """
    결과값 구간 설정

    Attributes:
        mode: 'linear' | 'log' | 'disabled'
        var_min, var_max: 선형 구간 범위
        n_var_bins: 선형 구간 개수
        pow_min, pow_max: 로그 구간의 10의 거듭제곱 범위 [pow_min, pow_max)
        n_minor: 10진 구간당 세부 구간 개수
    """
    mode: str = MODE_LINEAR
    var_min: float = 0.0
    var_max: float = 1.0
    n_var_bins: int = 1
    pow_min: int = 0
    pow_max: int = 1
    n_minor: int = 1

    def __post_init__(self):
        object.__setattr__(self, "mode", normalize_mode(self.mode))

    def validate(self) -> "BinningScheme":
        if self.mode == MODE_LINEAR:
            if int(self.n_var_bins) <= 0:
                raise ConfigError(f"n_var_bins must be positive, got {self.n_var_bins}")
            if not (math.isfinite(self.var_min) and math.isfinite(self.var_max)):
                raise ConfigError("var_min and var_max must be finite")
            if self.var_max == self.var_min:
                raise ConfigError(f"Zero-width bins: var_min == var_max == {self.var_min}")
            if self.var_max < self.var_min:
                raise ConfigError(f"var_max ({self.var_max}) is below var_min ({self.var_min})")
            if not math.isfinite(self.bin_width):
                raise ConfigError(f"Bin width overflows for range [{self.var_min}, {self.var_max}]")
        elif self.mode == MODE_LOG:
            if int(self.pow_max) <= int(self.pow_min):
                raise ConfigError(f"pow_max ({self.pow_max}) must exceed pow_min ({self.pow_min})")
            if int(self.n_minor) <= 0:
                raise ConfigError(f"n_minor must be positive, got {self.n_minor}")
            if int(self.pow_min) < sys.float_info.min_10_exp or int(self.pow_max) > sys.float_info.max_10_exp:
                raise ConfigError(f"Decades [{self.pow_min}, {self.pow_max}) exceed the float range")
        return self

    @property
    def n_bins(self) -> int:
        """Number of value bins per material."""
        if self.mode == MODE_LINEAR:
            return int(self.n_var_bins)
        if self.mode == MODE_LOG:
            return (int(self.pow_max) - int(self.pow_min)) * int(self.n_minor)
        return 1

    @property
    def bin_width(self) -> float:
        return (float(self.var_max) - float(self.var_min)) / float(self.n_var_bins)

    def bin_index(self, value: float) -> int:
        """Value bin for ``value``; out-of-range values saturate to the edge bins."""
        if self.mode == MODE_DISABLED:
            return 0
        if self.mode == MODE_LOG:
            return self._bin_index_log(value)
        return self._bin_index_linear(value)

    def _bin_index_linear(self, value: float) -> int:
        v = float(value)
        if math.isnan(v):
            raise DomainError("NaN value cannot be binned", value=v)
        last = int(self.n_var_bins) - 1
        if v <= self.var_min:
            return 0
        if v >= self.var_max:
            return last
        idx = int(math.floor((v - self.var_min) / self.bin_width))
        return min(max(idx, 0), last)

    def _bin_index_log(self, value: float) -> int:
        v = float(value)
        if math.isnan(v) or v <= 0.0:
            raise DomainError(f"Logarithmic binning needs a positive value, got {v!r}", value=v)
        if math.isinf(v):
            return self.n_bins - 1

        p = int(math.floor(math.log10(v)))
        # log10 round-off near exact powers of ten
        if p < sys.float_info.max_10_exp and v >= 10.0 ** (p + 1):
            p += 1
        elif v < 10.0 ** p:
            p -= 1
        p = min(max(p, int(self.pow_min)), int(self.pow_max) - 1)

        n_minor = int(self.n_minor)
        m = int(math.floor(n_minor * (v / 10.0 ** p - 1.0)))
        m = min(max(m, 0), n_minor - 1)
        return (p - int(self.pow_min)) * n_minor + m

    def sort_index(self, material_index: int, value: float) -> int:
        return int(material_index) * self.n_bins + self.bin_index(value)

    def bin_bounds(self, var_bin: int) -> tuple[float, float]:
        """Value range covered by a value bin (edge bins also absorb saturated values)."""
        i = int(var_bin)
        if not 0 <= i < self.n_bins:
            raise IndexError(f"bin {i} outside 0..{self.n_bins - 1}")
        if self.mode == MODE_LINEAR:
            w = self.bin_width
            return float(self.var_min + i * w), float(self.var_min + (i + 1) * w)
        if self.mode == MODE_LOG:
            n_minor = int(self.n_minor)
            p = int(self.pow_min) + i // n_minor
            m = i % n_minor
            low = 10.0 ** p * (1.0 + m / n_minor)
            high = 10.0 ** (p + 1) if m == n_minor - 1 else 10.0 ** p * (1.0 + (m + 1) / n_minor)
            return float(low), float(high)
        return -math.inf, math.inf

    def bin_midpoint(self, var_bin: int) -> float:
        low, high = self.bin_bounds(var_bin)
        if self.mode == MODE_LOG:
            return float(math.sqrt(low * high))
        if self.mode == MODE_DISABLED:
            return float("nan")
        return 0.5 * (low + high)


def material_lookup(materials: Sequence[Material]) -> dict[int, int]:
    """Element block ID -> material index."""
    lookup: dict[int, int] = {}
    for mat in materials:
        for block in mat.blocks:
            lookup[int(block)] = int(mat.index)
    return lookup


def sort_elements(
    mesh: MeshAccess,
    values: np.ndarray | None,
    materials: Sequence[Material],
    scheme: BinningScheme,
    *,
    on_domain_error: str = "raise",
) -> list[np.ndarray]:
    """
    Sort every element into its (material, value bin) slot.

    Args:
        mesh: 메쉬 접근 인터페이스
        values: ``mesh.element_ids()`` 순서의 결과값 (binning 비활성 시 None 가능)
        materials: 재질 목록
        scheme: 구간 설정
        on_domain_error: 'raise' | 'skip' | 'clamp'

    Returns:
        ``len(materials) * scheme.n_bins`` arrays of ascending element IDs.

    Raises:
        ConfigError: invalid scheme or policy
        DomainError: value outside the scheme's domain (policy 'raise')
        TopologyError: element whose block has no material
    """
    scheme.validate()
    if on_domain_error not in DOMAIN_ERROR_POLICIES:
        raise ConfigError(f"on_domain_error must be one of {DOMAIN_ERROR_POLICIES}, got {on_domain_error!r}")
    if not materials:
        raise ConfigError("No materials defined")

    elem_ids = np.asarray(mesh.element_ids(), dtype=np.int64)
    if scheme.mode != MODE_DISABLED:
        if values is None:
            raise ConfigError("Field values are required when binning is enabled")
        values = np.asarray(values, dtype=np.float64).reshape(-1)
        if values.shape[0] != elem_ids.shape[0]:
            raise ConfigError(f"Got {values.shape[0]} values for {elem_ids.shape[0]} elements")

    lookup = material_lookup(materials)
    n_bins = scheme.n_bins
    buckets: list[list[int]] = [[] for _ in range(len(materials) * n_bins)]
    n_skipped = 0

    for i, elem_id in enumerate(elem_ids):
        block = int(mesh.element_block(int(elem_id)))
        mat = lookup.get(block)
        if mat is None:
            raise TopologyError(f"Element {int(elem_id)} (block {block}) has no material assignment")

        if scheme.mode == MODE_DISABLED:
            var_bin = 0
        else:
            try:
                var_bin = scheme.bin_index(float(values[i]))
            except DomainError as e:
                if on_domain_error == "raise":
                    raise DomainError(
                        f"Element {int(elem_id)}: {e}", elem_id=int(elem_id), value=e.value
                    ) from e
                log_once(
                    _LOGGER,
                    f"binning:domain:{on_domain_error}",
                    logging.WARNING,
                    "Element %d has out-of-domain value %r; policy=%s (further occurrences not logged)",
                    int(elem_id),
                    e.value,
                    on_domain_error,
                )
                n_skipped += 1
                if on_domain_error == "skip":
                    continue
                var_bin = 0

        buckets[mat * n_bins + var_bin].append(int(elem_id))

    if n_skipped:
        _LOGGER.warning("%d elements had out-of-domain values (policy=%s)", n_skipped, on_domain_error)

    # element_ids() is ascending, so every bucket already is.
    return [np.asarray(b, dtype=np.int64) for b in buckets]
