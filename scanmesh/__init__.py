"""
ScanMesh - Streaming surface mesh and ceiling boundary reconstruction.

This service consumes mesh fragments from a depth-sensing subsystem, merges
them into a single world-space mesh, removes duplicate coplanar triangles,
smooths the result, and grows a 2D ceiling polygon across frames.
"""

__version__ = "1.0.0"
