"""
fieldgeom - binned volume-mesh results to tagged surface geometry

Main entry point
"""

import sys
import logging
from pathlib import Path

# Ensure repository root is on sys.path so "fieldgeom" is importable from a checkout.
ROOT_DIR = Path(__file__).resolve().parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from fieldgeom.core.errors import FieldGeomError
from fieldgeom.core.output_paths import geometry_output_path

_LOGGER = logging.getLogger(__name__)
DEFAULT_MESH_UNIT = "cm"


def run_cli(argv=None) -> int:
    """커맨드라인 인터페이스 실행"""
    from fieldgeom.core.logging_utils import setup_logging

    log_path = setup_logging(console_level="WARNING")
    if log_path is None:
        _LOGGER.debug("File logging unavailable; continuing without it")

    args = list(sys.argv[1:] if argv is None else argv)

    if not args or args[0] in ('--help', '-h'):
        print_help()
        return 0

    if args[0] == '--info':
        if len(args) < 2:
            print("Error: --info needs a mesh file")
            return 2
        return show_file_info(args[1])

    mesh_path = args[0]
    options = {'--config': None, '--output': None, '--unit': None}
    rest = args[1:]
    while rest:
        key = rest.pop(0)
        if key not in options or not rest:
            print(f"Error: Unknown or incomplete option: {key}")
            print("Use --help for usage information")
            return 2
        options[key] = rest.pop(0)

    if not Path(mesh_path).exists():
        print(f"Error: File not found: {mesh_path}")
        return 2

    return process_mesh(
        mesh_path, options["--config"], options["--output"], options["--unit"], log_path=log_path
    )


def print_help():
    """도움말 출력"""
    from fieldgeom.core.mesh_loader import VolumeMeshLoader

    print("=" * 60)
    print("fieldgeom - field-binned geometry from volume mesh results")
    print("=" * 60)
    print()
    print("Usage:")
    print("  python main.py <mesh_file> [--config cfg.json] [--output out.fgz] [--unit cm]")
    print("  python main.py --info <mesh_file>       # Show file info")
    print()
    print(f"Supported formats: {list(VolumeMeshLoader.SUPPORTED_FORMATS.keys())}")
    print()
    print("Config keys (JSON):")
    print("  mode (linear|log|disabled), var_name, var_min, var_max, n_var_bins,")
    print("  pow_min, pow_max, n_minor, length_scale | mesh_unit/target_unit,")
    print("  faceting_tol, geom_tol, on_domain_error (raise|skip|clamp), max_workers")
    print()
    print("Examples:")
    print("  python main.py reactor.msh --config temperature_bins.json")
    print("  python main.py --info reactor.vtu")


def show_file_info(filepath: str) -> int:
    """파일 정보 표시"""
    from fieldgeom.core.mesh_loader import VolumeMeshLoader

    print(f"\nFile Info: {filepath}")
    print("-" * 40)

    try:
        loader = VolumeMeshLoader(default_unit=DEFAULT_MESH_UNIT)
        info = loader.get_file_info(filepath)
    except (FileNotFoundError, ValueError) as e:
        print(f"  Error: {e}")
        return 1

    for key, value in info.items():
        print(f"  {key}: {value}")
    return 0


def process_mesh(
    filepath: str,
    config_path: str | None,
    output_path: str | None,
    unit: str | None,
    *,
    log_path: Path | None = None,
) -> int:
    """메쉬 전체 처리 (로드 -> 구간화 -> 영역 -> 표면 -> 저장)"""
    from fieldgeom.core.config import PipelineConfig, load_config
    from fieldgeom.core.geometry_sink import MemoryGeometrySink
    from fieldgeom.core.logging_utils import format_exception_message
    from fieldgeom.core.mesh_loader import VolumeMeshLoader
    from fieldgeom.core.model_exporter import save_geometry
    from fieldgeom.core.pipeline import FieldGeometryPipeline
    from fieldgeom.core.unit_utils import length_scale

    print(f"\n{'='*60}")
    print(f"Processing: {filepath}")
    print(f"{'='*60}")

    try:
        config = load_config(config_path) if config_path else PipelineConfig().validate()

        print("\n[1/3] Loading mesh...")
        if unit:
            # explicit mesh unit: write geometry in centimetres
            config = config.with_overrides(length_scale=length_scale(unit)).validate()
        mesh = VolumeMeshLoader(default_unit=unit or DEFAULT_MESH_UNIT).load(filepath)
        print(f"      Nodes: {mesh.n_nodes:,}")
        print(f"      Elements: {mesh.n_elements:,}")
        print(f"      Fields: {sorted(mesh.fields)}")

        print("\n[2/3] Building geometry...")
        sink = MemoryGeometrySink()
        result = FieldGeometryPipeline(mesh, sink, config).update()
        for key, value in result.summary().items():
            print(f"      {key}: {value}")

        print("\n[3/3] Saving output...")
        out = geometry_output_path(filepath, output_path)
        save_geometry(out, sink, meta={"source": str(filepath), "config": config.to_dict()})
        print(f"      Saved: {out}")
    except (FieldGeomError, FileNotFoundError, ValueError) as e:
        _LOGGER.exception("Processing failed: %s", filepath)
        print()
        print(format_exception_message("Error: processing failed", f"{type(e).__name__}: {e}", log_path=log_path))
        return 1

    print(f"\n{'='*60}")
    print("Done!")
    print(f"{'='*60}")
    return 0


if __name__ == '__main__':
    sys.exit(run_cli())
