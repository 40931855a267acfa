"""
Volume Mesh Loader Module
체적 메쉬 파일 로딩

Reads solver result meshes with meshio and keeps only volume cells. Element
blocks come from the physical-group / cell-tag data, scalar fields from the
remaining cell data.

Supports: MSH, VTU, VTK, XDMF, MED, INP, Exodus
"""

from pathlib import Path
from typing import Optional, Union
import logging

import numpy as np

try:
    import meshio
except ImportError:
    raise ImportError("meshio is required. Install with: pip install meshio")

from .errors import ConfigError
from .volume_mesh import CELL_NODE_COUNT, VolumeMesh

_LOGGER = logging.getLogger(__name__)

# Higher-order cells are reduced to their corner nodes.
_CELL_TYPE_MAP = {
    "tetra": "tetra",
    "tetra10": "tetra",
    "wedge": "wedge",
    "wedge15": "wedge",
    "hexahedron": "hexahedron",
    "hexahedron20": "hexahedron",
    "hexahedron27": "hexahedron",
}

_BLOCK_KEYS = ("gmsh:physical", "cell_tags", "medit:ref", "block", "material", "subdomain")


class VolumeMeshLoader:
    """
    체적 메쉬 파일 로더

    Supported formats:
        - MSH (Gmsh)
        - VTU / VTK
        - XDMF
        - MED
        - INP (Abaqus)
        - E / EXO (Exodus II)
    """

    SUPPORTED_FORMATS = {
        '.msh': 'Gmsh',
        '.vtu': 'VTK Unstructured Grid',
        '.vtk': 'VTK Legacy',
        '.xdmf': 'XDMF',
        '.med': 'Salome MED',
        '.inp': 'Abaqus Input',
        '.e': 'Exodus II',
        '.exo': 'Exodus II',
    }

    def __init__(self, default_unit: str = 'cm'):
        """
        Args:
            default_unit: 기본 좌표 단위 ('mm', 'cm', 'm')
        """
        self.default_unit = default_unit

    def load(self, filepath: Union[str, Path], unit: Optional[str] = None) -> VolumeMesh:
        """
        메쉬 파일 로드

        Args:
            filepath: 메쉬 파일 경로
            unit: 좌표 단위 (None이면 default_unit 사용)

        Returns:
            VolumeMesh

        Raises:
            FileNotFoundError: 파일이 존재하지 않음
            ValueError: 지원하지 않는 포맷
            ConfigError: 체적 요소가 없음
        """
        filepath = Path(filepath)

        if not filepath.exists():
            raise FileNotFoundError(f"File not found: {filepath}")

        ext = filepath.suffix.lower()
        if ext not in self.SUPPORTED_FORMATS:
            raise ValueError(
                f"Unsupported format: {ext}\n"
                f"Supported formats: {list(self.SUPPORTED_FORMATS.keys())}"
            )

        mesh = meshio.read(str(filepath))
        volume = self.from_meshio(mesh, unit=unit or self.default_unit)
        _LOGGER.info(
            "Loaded %s: %d nodes, %d elements, fields=%s",
            filepath,
            volume.n_nodes,
            volume.n_elements,
            sorted(volume.fields),
        )
        return volume

    @staticmethod
    def from_meshio(mesh: 'meshio.Mesh', unit: str = 'cm') -> VolumeMesh:
        """meshio.Mesh에서 VolumeMesh 생성 (체적 셀만 사용)"""
        cells: dict[str, list[np.ndarray]] = {}
        blocks: dict[str, list[np.ndarray]] = {}
        fields: dict[str, dict[str, list[np.ndarray]]] = {}

        block_key = next((k for k in _BLOCK_KEYS if k in mesh.cell_data), None)

        for bi, cell_block in enumerate(mesh.cells):
            target = _CELL_TYPE_MAP.get(cell_block.type)
            if target is None:
                continue
            conn = np.asarray(cell_block.data)[:, :CELL_NODE_COUNT[target]]
            cells.setdefault(target, []).append(conn)

            if block_key is not None:
                tags = np.asarray(mesh.cell_data[block_key][bi]).reshape(-1)
            else:
                tags = np.zeros(conn.shape[0], dtype=np.int64)
            blocks.setdefault(target, []).append(tags.astype(np.int64))

            for name, per_block in mesh.cell_data.items():
                if name == block_key or name.startswith("gmsh:"):
                    continue
                data = np.asarray(per_block[bi])
                if data.ndim != 1 or not np.issubdtype(data.dtype, np.number):
                    continue
                fields.setdefault(name, {}).setdefault(target, []).append(data.astype(np.float64))

        if not cells:
            raise ConfigError("No volume elements (tetra, wedge, hexahedron) in mesh")

        cell_arrays = {t: np.vstack(parts) for t, parts in cells.items()}
        block_array = np.concatenate([np.concatenate(blocks[t]) for t in cell_arrays])

        field_arrays: dict[str, np.ndarray] = {}
        for name, per_type in fields.items():
            # Only keep fields defined on every volume block.
            if all(t in per_type and len(per_type[t]) == len(cells[t]) for t in cell_arrays):
                field_arrays[name] = np.concatenate([np.concatenate(per_type[t]) for t in cell_arrays])

        block_names: dict[int, str] = {}
        for name, data in (getattr(mesh, "field_data", None) or {}).items():
            arr = np.asarray(data).reshape(-1)
            # gmsh field_data: name -> [tag, dim]
            if arr.size >= 2 and int(arr[1]) == 3:
                block_names[int(arr[0])] = str(name)
        for b in np.unique(block_array):
            block_names.setdefault(int(b), f"block_{int(b)}")

        return VolumeMesh(
            nodes=np.asarray(mesh.points, dtype=np.float64)[:, :3],
            cells=cell_arrays,
            blocks=block_array,
            block_names={b: block_names[b] for b in sorted(block_names) if b in set(block_array.tolist())},
            fields=field_arrays,
            unit=unit,
        )

    def get_file_info(self, filepath: Union[str, Path]) -> dict:
        """
        파일 정보 미리보기

        Returns:
            dict: 파일 정보 딕셔너리
        """
        filepath = Path(filepath)

        if not filepath.exists():
            raise FileNotFoundError(f"File not found: {filepath}")

        ext = filepath.suffix.lower()
        info = {
            'filename': filepath.name,
            'format': self.SUPPORTED_FORMATS.get(ext, 'Unknown'),
            'extension': ext,
            'file_size_mb': round(filepath.stat().st_size / (1024 * 1024), 2),
        }

        try:
            mesh = self.load(filepath)
        except (ValueError, ConfigError, OSError) as e:
            info['error'] = str(e)
            return info

        info['n_nodes'] = mesh.n_nodes
        info['n_elements'] = mesh.n_elements
        info['cell_types'] = {t: int(c.shape[0]) for t, c in mesh.cells.items()}
        info['materials'] = sorted(set(mesh.block_materials().values()))
        info['fields'] = sorted(mesh.fields)
        return info
