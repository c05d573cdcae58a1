"""
Rerun blueprint manager for scan visualization.

Creates the layout for the 3D mesh, the top-down ceiling view and statistics.
"""

import rerun.blueprint as rrb
import logging

logger = logging.getLogger(__name__)


def create_scan_visualization_blueprint() -> rrb.Blueprint:
    """
    Create the scan visualization blueprint.

    Layout:
    - Left: 3D mesh (raw or smoothed) with the ceiling polygon
    - Right Top: Top-down view of the ceiling outline
    - Right Bottom: Statistics panel

    Returns:
        Rerun Blueprint object
    """
    blueprint = rrb.Blueprint(
        rrb.Horizontal(
            rrb.Spatial3DView(
                name="🧱 Reconstruction",
                origin="/scan/world",
                contents=[
                    "/scan/world/mesh",
                    "/scan/world/smoothed_mesh",
                    "/scan/world/ceiling",
                    "/scan/world/ceiling_outline"
                ]
            ),

            rrb.Vertical(
                rrb.Spatial3DView(
                    name="📐 Ceiling Outline",
                    origin="/scan/world",
                    contents=[
                        "/scan/world/ceiling",
                        "/scan/world/ceiling_outline"
                    ]
                ),

                rrb.TextDocumentView(
                    name="📊 Statistics",
                    origin="/scan/stats",
                    contents=["/scan/stats/**"]
                ),

                row_shares=[2, 1]
            ),

            column_shares=[2, 1]
        ),
        auto_layout=False
    )

    logger.info("Created scan visualization blueprint")
    return blueprint
