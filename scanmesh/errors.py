"""
Exception types raised by the mesh service.
"""


class ScanMeshError(Exception):
    """Base class for all service errors"""


class GeometryError(ScanMeshError):
    """Degenerate or empty input to aggregation or hull construction."""


class MeshIOError(ScanMeshError, OSError):
    """File system read/write failure during export or import."""


class MeshParseError(ScanMeshError, ValueError):
    """A serialized mesh (or pose companion) could not be turned into geometry."""


class ConfigError(ScanMeshError, ValueError):
    """Invalid configuration value."""
