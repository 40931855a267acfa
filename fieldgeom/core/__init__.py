"""
Core processing modules for fieldgeom
"""

from .errors import ConfigError, DomainError, TopologyError, SinkWriteError, PipelineBusyError
from .volume_mesh import MeshAccess, VolumeMesh, Material, box_mesh, find_materials
from .binning import BinningScheme, sort_elements
from .region_builder import Region, RegionBuilder, group_local_elems
from .surface_extractor import SurfaceExtractor, SurfacePatch, ExtractionResult, SENSE_FORWARD, SENSE_REVERSE
from .geometry_sink import GeometrySink, MemoryGeometrySink
from .geometry_tagger import GeometryTagger, TaggedGeometry
from .config import PipelineConfig, load_config
from .pipeline import FieldGeometryPipeline, PipelineResult
from .results import set_solution

__all__ = [
    # Errors
    'ConfigError',
    'DomainError',
    'TopologyError',
    'SinkWriteError',
    'PipelineBusyError',
    # Mesh access
    'MeshAccess',
    'VolumeMesh',
    'Material',
    'find_materials',
    'box_mesh',
    # Classification
    'BinningScheme',
    'sort_elements',
    # Regions
    'Region',
    'RegionBuilder',
    'group_local_elems',
    # Surfaces
    'SurfaceExtractor',
    'SurfacePatch',
    'ExtractionResult',
    'SENSE_FORWARD',
    'SENSE_REVERSE',
    # Geometry output
    'GeometrySink',
    'MemoryGeometrySink',
    'GeometryTagger',
    'TaggedGeometry',
    # Pipeline
    'PipelineConfig',
    'load_config',
    'FieldGeometryPipeline',
    'PipelineResult',
    'set_solution',
]
