from fieldgeom.core.runtime_defaults import (
    ENV_FACETING_TOL,
    ENV_GEOM_TOL,
    ENV_LENGTH_SCALE,
    ENV_MAX_WORKERS,
    load_runtime_defaults,
)


def _clear_runtime_env(monkeypatch):
    for key in (
        ENV_FACETING_TOL,
        ENV_GEOM_TOL,
        ENV_LENGTH_SCALE,
        ENV_MAX_WORKERS,
    ):
        monkeypatch.delenv(key, raising=False)


def test_runtime_defaults_without_env(monkeypatch):
    _clear_runtime_env(monkeypatch)
    defaults = load_runtime_defaults()

    assert defaults.faceting_tol == 1e-4
    assert defaults.geom_tol == 1e-6
    assert defaults.length_scale == 1.0
    assert defaults.max_workers == 1


def test_runtime_defaults_with_valid_env(monkeypatch):
    _clear_runtime_env(monkeypatch)
    monkeypatch.setenv(ENV_FACETING_TOL, "0.001")
    monkeypatch.setenv(ENV_GEOM_TOL, "1e-5")
    monkeypatch.setenv(ENV_LENGTH_SCALE, "100")
    monkeypatch.setenv(ENV_MAX_WORKERS, "8")

    defaults = load_runtime_defaults()

    assert defaults.faceting_tol == 0.001
    assert defaults.geom_tol == 1e-5
    assert defaults.length_scale == 100.0
    assert defaults.max_workers == 8


def test_runtime_defaults_invalid_values_fallback(monkeypatch):
    _clear_runtime_env(monkeypatch)
    monkeypatch.setenv(ENV_FACETING_TOL, "abc")
    monkeypatch.setenv(ENV_GEOM_TOL, "0")
    monkeypatch.setenv(ENV_LENGTH_SCALE, "nan")
    monkeypatch.setenv(ENV_MAX_WORKERS, "-1")

    defaults = load_runtime_defaults()

    assert defaults.faceting_tol == 1e-4
    assert defaults.geom_tol == 1e-6
    assert defaults.length_scale == 1.0
    assert defaults.max_workers == 1
