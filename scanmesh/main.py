"""
ScanMesh Service - Main entry point.

Consumes mesh fragment snapshots, rebuilds the surface mesh on a serialized
worker, grows the ceiling polygon, and visualizes the results in Rerun.
"""

import asyncio
import sys
from typing import List, Optional

import numpy as np
import rerun as rr
from colorama import Fore, Style

from scanmesh import __version__
from scanmesh.config import ScanMeshConfig, config as default_config
from scanmesh.errors import ConfigError, GeometryError, MeshIOError
from scanmesh.io_handlers.obj_serializer import export_fragments
from scanmesh.io_handlers.rabbitmq_consumer import (
    MSG_EXPORT,
    MSG_RESET,
    MSG_SNAPSHOT,
    RabbitMQConsumer,
    decode_message,
)
from scanmesh.io_handlers.shared_memory import FragmentReader
from scanmesh.processing.geometry import Fragment, Snapshot
from scanmesh.processing.session import CycleResult
from scanmesh.processing.worker import SceneState, SnapshotWorker
from scanmesh.utils.logger import get_logger, setup_logging
from scanmesh.visualization.blueprint_manager import create_scan_visualization_blueprint
from scanmesh.visualization.rerun_publisher import RerunPublisher

logger = get_logger(__name__)


class ScanMeshService:
    """
    Main service orchestrator.

    Reads fragment snapshots announced over RabbitMQ, hands them to the
    serialized worker, and publishes finished cycles to Rerun.
    """

    def __init__(self, service_config: Optional[ScanMeshConfig] = None):
        """Initialize service components"""
        logger.info("Initializing ScanMesh Service...")

        self.config = service_config or default_config

        # Components
        self.reader = FragmentReader(self.config.shm_path)
        self.worker = SnapshotWorker(
            self.config.reconstruction,
            max_pending=self.config.max_pending_snapshots
        )
        self.scene = SceneState()
        self.rabbitmq = RabbitMQConsumer(self.config.rabbitmq_url, self.config.fragment_exchange)
        self.rerun_publisher = RerunPublisher(log_interval_seconds=self.config.log_interval_seconds)

        self.running = False
        self.last_published: Optional[CycleResult] = None
        self.flush_task: Optional[asyncio.Task] = None

        logger.info("✅ ScanMesh Service initialized")

    async def handle_message(self, message) -> None:
        """
        Handle one RabbitMQ message.

        Args:
            message: RabbitMQ message with a msgpack payload
        """
        async with message.process():
            try:
                data = decode_message(message.body)
                if data is None:
                    return
                await self.dispatch(data)
            except Exception as e:
                logger.error(f"Error handling message: {e}", exc_info=True)

    async def dispatch(self, data: dict) -> None:
        """Route a decoded message by type"""
        message_type = data.get('type')

        if message_type == MSG_SNAPSHOT:
            await self.handle_snapshot(data)
        elif message_type == MSG_EXPORT:
            await self.handle_export(data)
        elif message_type == MSG_RESET:
            await self.worker.reset()
            self.scene.clear()
            logger.info("Session reset requested")
        else:
            logger.debug(f"Ignoring message type: {message_type}")

    def read_fragments(self, entries: List[dict]) -> List[Fragment]:
        """Read the announced fragments from shared memory, in order"""
        fragments = []
        for entry in entries:
            shm_key = entry.get('shm_key')
            if not shm_key:
                continue
            fragment = self.reader.read_fragment(shm_key, entry.get('fragment_id'))
            if fragment is not None:
                fragments.append(fragment)
            if self.config.unlink_shm:
                self.reader.unlink(shm_key)
        return fragments

    async def handle_snapshot(self, data: dict) -> Optional[CycleResult]:
        """
        Process one fragment snapshot.

        Args:
            data: Decoded `fragments.snapshot` message
        """
        fragments = self.read_fragments(data.get('fragments') or [])
        snapshot = Snapshot(
            fragments=tuple(fragments),
            snapshot_id=str(data.get('snapshot_id', '')),
            timestamp_ns=int(data.get('timestamp_ns', 0))
        )

        logger.debug(f"Received snapshot {snapshot.snapshot_id}: {len(snapshot)} fragments")

        result = await self.worker.ingest_snapshot(snapshot)
        self.apply_result(result)
        return result

    def apply_result(self, result: CycleResult) -> None:
        """Swap a finished cycle into the scene and publish it"""
        polygon_changed = self.scene.apply(result)

        if self.rerun_publisher.should_log_mesh():
            self.publish_mesh(result)
        else:
            self.schedule_mesh_flush()

        if polygon_changed:
            self.rerun_publisher.log_polygon(result.polygon, result.timestamp_ns)
            logger.info(
                f"Ceiling polygon: {result.polygon.point_count} points, "
                f"area {result.polygon.area:.2f} m² at height {result.polygon.height:.3f}"
            )

    def publish_mesh(self, result: CycleResult) -> None:
        self.rerun_publisher.log_mesh(result.mesh, result.timestamp_ns, result.smoothed_mesh)
        self.last_published = result

    def schedule_mesh_flush(self) -> None:
        """Publish the newest throttled result once the interval has passed"""
        if self.flush_task is None or self.flush_task.done():
            self.flush_task = asyncio.get_running_loop().create_task(self.flush_mesh())

    async def flush_mesh(self) -> None:
        await asyncio.sleep(self.rerun_publisher.seconds_until_next_mesh())
        result = self.scene.result
        if result is not None and result is not self.last_published:
            self.publish_mesh(result)

    async def handle_export(self, data: dict) -> None:
        """
        Export the fragments of the latest snapshot as OBJ.

        Args:
            data: Decoded `export.request` message (optional `name`, `pose`)
        """
        fragments = await self.worker.last_fragments()
        if not fragments:
            logger.warning("Export requested before any snapshot was processed")
            return

        pose = data.get('pose')
        if pose is not None:
            # Pose arrives column-major, like the companion file
            pose = np.asarray(pose, dtype=np.float64).reshape(4, 4).T

        try:
            path = await asyncio.get_running_loop().run_in_executor(
                None,
                lambda: export_fragments(
                    fragments, self.config.export_dir, name=data.get('name'), pose=pose
                )
            )
            logger.info(f"✅ Export saved at {path}")
        except (MeshIOError, GeometryError) as e:
            logger.error(f"Export failed: {e}")

    async def log_statistics(self) -> None:
        """Log statistics to Rerun and the console"""
        try:
            stats = await self.worker.statistics()
            stats.update(self.rerun_publisher.get_statistics())

            self.rerun_publisher.log_statistics(stats)

            logger.info(
                f"📊 Stats: snapshots={stats['total_snapshots']}, "
                f"triangles={stats['last_triangle_count']:,}, "
                f"ceiling_points={stats['ceiling_point_count']}, "
                f"pending={stats['pending_commands']}"
            )

        except Exception as e:
            logger.error(f"Error logging statistics: {e}", exc_info=True)

    async def periodic_stats_logger(self) -> None:
        """Periodically log statistics"""
        while self.running:
            try:
                await asyncio.sleep(self.config.stats_interval_seconds)
                await self.log_statistics()
            except asyncio.CancelledError:
                break

    async def run(self) -> None:
        """Main service loop"""
        try:
            self.running = True

            logger.info(f"\n{self.config}")

            # Initialize Rerun
            logger.info("Initializing Rerun...")
            rr.init("scanmesh", spawn=False)

            if self.config.rerun_connect:
                try:
                    rr.connect_grpc(url=self.config.rerun_url)
                    logger.info(f"✅ Connected to Rerun at {self.config.rerun_url}")
                except Exception as e:
                    logger.warning(f"Could not connect to Rerun: {e}. Logging to memory.")

            rr.send_blueprint(create_scan_visualization_blueprint())
            logger.info("✅ Rerun blueprint sent")

            await self.rabbitmq.connect()
            await self.rabbitmq.consume_fragments(self.handle_message)

            stats_task = asyncio.create_task(self.periodic_stats_logger())

            logger.info(f"\n{Fore.GREEN}{'='*60}")
            logger.info("🚀 ScanMesh Service Running")
            logger.info(f"{'='*60}{Style.RESET_ALL}\n")

            try:
                await asyncio.Future()  # Run forever
            finally:
                stats_task.cancel()
                tasks = [stats_task]
                if self.flush_task is not None:
                    self.flush_task.cancel()
                    tasks.append(self.flush_task)
                await asyncio.gather(*tasks, return_exceptions=True)

        except Exception as e:
            logger.error(f"Fatal error in service: {e}", exc_info=True)
            raise

        finally:
            self.running = False
            await self.rabbitmq.close()
            self.worker.close()
            logger.info("ScanMesh Service stopped")


async def main():
    """Main entry point"""
    setup_logging(default_config.log_level, log_file=default_config.log_file or None)

    try:
        default_config.validate()
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)

    print(f"\n{Fore.CYAN}{'='*60}")
    print(f"  ScanMesh Service v{__version__}")
    print("  Streaming Surface Mesh & Ceiling Reconstruction")
    print(f"{'='*60}{Style.RESET_ALL}\n")

    service = ScanMeshService()

    try:
        await service.run()
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Service failed: {e}", exc_info=True)
        sys.exit(1)


def run() -> None:
    """Console script entry point"""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == '__main__':
    run()
