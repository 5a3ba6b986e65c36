#!/usr/bin/env python3
"""
Robot Bridge - Main Entry Point

This server connects the robot's MQTT broker with the browser control
front-end:
- Broadcasts battery, status and velocity updates to every WebSocket client
- Publishes joystick commands from any client to robo/comandos
- Starts the broker container on startup and stops it on shutdown

See robot_bridge.config for the environment variables.

Usage:
    export MQTT_HOST=192.168.0.10
    python -m robot_bridge.main
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from typing import List, Optional

import uvicorn

from .config import BridgeConfig, ConfigError
from .lifecycle import ProcessLifecycleController
from .mqtt_bridge import AsyncMQTTBridge
from .pages import register_pages
from .router import BridgeRouter
from .ws_server import SocketHub, WebSocketServer

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger(__name__)


class RobotBridge:
    """
    Main bridge integrating WebSocket and MQTT.

    Architecture:
        Broker -> MQTT bridge -> router -> socket hub -> all clients
        Client -> WebSocket -> router -> MQTT bridge (robo/comandos)
    """

    def __init__(self, config: BridgeConfig):
        self.config = config

        # Components
        self.hub = SocketHub()
        self.mqtt_bridge = AsyncMQTTBridge(
            host=config.mqtt_host,
            port=config.mqtt_port,
            keepalive=config.mqtt_keepalive,
        )
        self.router = BridgeRouter(hub=self.hub, broker=self.mqtt_bridge)
        self.ws_server = WebSocketServer(
            hub=self.hub,
            on_command=self.router.handle_command,
            stats_provider=self.get_stats,
        )
        register_pages(self.ws_server.app, config.frontend_dir)

        self._router_task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Connect to the broker and start forwarding."""
        logger.info("Starting Robot Bridge...")

        try:
            if await self.mqtt_bridge.start():
                logger.info("MQTT bridge started")
            else:
                logger.warning("MQTT bridge not connected yet, continuing")
        except Exception as e:
            logger.error(f"Failed to start MQTT bridge: {e}")

        self._router_task = asyncio.create_task(
            self.router.run(self.mqtt_bridge.messages())
        )
        logger.info(f"Robot Bridge started on {self.config.host}:{self.config.port}")

    async def stop(self) -> None:
        """Stop forwarding and disconnect from the broker."""
        logger.info("Stopping Robot Bridge...")

        if self._router_task:
            self._router_task.cancel()
            try:
                await self._router_task
            except asyncio.CancelledError:
                pass
            self._router_task = None

        await self.mqtt_bridge.stop()
        logger.info("Robot Bridge stopped")

    def get_app(self):
        """Get the FastAPI application for uvicorn."""
        return self.ws_server.app

    def get_stats(self) -> dict:
        """Get bridge statistics."""
        return {
            "ws_server": self.ws_server.get_stats(),
            "mqtt_bridge": self.mqtt_bridge.get_stats(),
            "router": self.router.get_stats(),
        }


async def run_server(bridge: RobotBridge) -> None:
    """Run the server with uvicorn."""
    config = uvicorn.Config(
        bridge.get_app(),
        host=bridge.config.host,
        port=bridge.config.port,
        log_level=bridge.config.log_level.lower(),
        access_log=True,
    )
    server = uvicorn.Server(config)
    await server.serve()


async def main_async(config: BridgeConfig, lifecycle: ProcessLifecycleController) -> None:
    """Async main entry point."""
    loop = asyncio.get_running_loop()

    # Broker process first, then the connection to it
    await loop.run_in_executor(None, lifecycle.start)

    bridge = RobotBridge(config)

    shutdown_event = asyncio.Event()

    def signal_handler():
        logger.info("Shutdown signal received")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await bridge.start()

        # Run server until shutdown
        server_task = asyncio.create_task(run_server(bridge))
        shutdown_task = asyncio.create_task(shutdown_event.wait())

        done, pending = await asyncio.wait(
            [server_task, shutdown_task],
            return_when=asyncio.FIRST_COMPLETED,
        )

        # Cancel pending tasks
        for task in pending:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    except Exception as e:
        logger.error(f"Server error: {e}")
    finally:
        await bridge.stop()
        lifecycle.stop()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="MQTT <-> WebSocket bridge for robot control")
    parser.add_argument("--mqtt-host", help="MQTT broker host (overrides MQTT_HOST)")
    parser.add_argument("--mqtt-port", type=int, help="MQTT broker port (overrides MQTT_PORT)")
    parser.add_argument("--host", help="HTTP/WebSocket bind address (overrides HOST)")
    parser.add_argument("--port", type=int, help="HTTP/WebSocket port (overrides PORT)")
    parser.add_argument("--frontend-dir", help="Static page directory (overrides FRONTEND_DIR)")
    parser.add_argument("--log-level", help="Log level (overrides LOG_LEVEL)")
    return parser.parse_args(argv)


def load_config(args: argparse.Namespace) -> BridgeConfig:
    """Environment configuration with command line overrides applied."""
    env = {
        "MQTT_HOST": args.mqtt_host,
        "MQTT_PORT": args.mqtt_port,
        "HOST": args.host,
        "PORT": args.port,
        "FRONTEND_DIR": args.frontend_dir,
        "LOG_LEVEL": args.log_level,
    }
    overrides = {name: str(value) for name, value in env.items() if value is not None}
    return BridgeConfig.from_env({**os.environ, **overrides})


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    args = parse_args(argv)

    try:
        config = load_config(args)
    except ConfigError as e:
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    # Configure logging
    logging.basicConfig(level=config.log_level, format=LOG_FORMAT)

    lifecycle = ProcessLifecycleController(
        start_command=config.broker_start_cmd,
        stop_command=config.broker_stop_cmd,
    )

    try:
        asyncio.run(main_async(config, lifecycle))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)


if __name__ == "__main__":
    main()
