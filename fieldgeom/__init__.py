"""
fieldgeom - binned volume-mesh results to tagged surface geometry
"""

__version__ = "0.1.0"
