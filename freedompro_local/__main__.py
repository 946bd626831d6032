#
# Copyright 2025 The TadoLocal and AmpScm contributors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#

"""Command-line interface for Freedompro Local."""

import asyncio
import argparse
import logging
import logging.handlers
import os
import signal
import sys
from pathlib import Path
from typing import Optional

import uvicorn

from .api import FreedomproLocalAPI
from .cloud import DEFAULT_BASE_URL, FreedomproCloudAPI
from .host import SQLiteAccessoryHost
from .poller import ACCESSORY_POLL_INTERVAL, GLOBAL_POLL_INTERVAL
from .routes import create_app, register_routes
from . import zeroconf_register

# Logger will be configured in main() based on daemon/console mode
logger = logging.getLogger(__name__)

DEFAULT_PORT = 4408

# Global variables
local_api: Optional[FreedomproLocalAPI] = None
server: Optional[uvicorn.Server] = None


def build_uvicorn_log_config(args) -> dict:
    """Route uvicorn logging through the same format as our own loggers."""
    if args.syslog:
        # Syslog mode: no handlers of its own, propagate to the root logger
        return {
            "version": 1,
            "disable_existing_loggers": False,
            "loggers": {
                "uvicorn": {"handlers": [], "level": "INFO", "propagate": True},
                "uvicorn.error": {"handlers": [], "level": "INFO", "propagate": True},
                "uvicorn.access": {"handlers": [], "level": "WARNING", "propagate": True},
            },
        }

    if args.daemon:
        formatter = {"format": "%(levelname)-8s %(message)s"}
    else:
        formatter = {"format": "%(asctime)s %(levelname)s %(message)s", "datefmt": "%Y-%m-%d %H:%M:%S"}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": formatter},
        "handlers": {
            "default": {
                "formatter": "default",
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            "uvicorn": {"handlers": ["default"], "level": "INFO", "propagate": False},
            "uvicorn.error": {"handlers": ["default"], "level": "INFO", "propagate": False},
            "uvicorn.access": {"handlers": ["default"], "level": "INFO", "propagate": False},
        },
    }


async def run_server(args):
    """Run the Freedompro Local server."""
    global local_api, server

    def handle_signal(signum, frame):
        """Handle shutdown signals gracefully."""
        logger.info(f"Received signal {signum}, initiating shutdown...")
        if local_api:
            local_api.host.close_listeners()
        if server:
            server.should_exit = True

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    mdns_registered = False
    try:
        db_path = Path(os.path.expanduser(args.state))
        host = SQLiteAccessoryHost(str(db_path))
        cloud_api = FreedomproCloudAPI(args.api_key, base_url=args.base_url)

        local_api = FreedomproLocalAPI(
            cloud_api,
            host,
            accessory_poll_interval=args.accessory_poll_interval,
            global_poll_interval=args.global_poll_interval,
            reconnect_delay=args.reconnect_delay,
        )

        app = create_app()
        register_routes(app, lambda: local_api)

        await local_api.initialize()

        if not args.no_mdns:
            mdns_registered, error = await zeroconf_register.register_service_async(
                port=args.port, props={'path': '/', 'version': app.version}
            )
            if not mdns_registered:
                logger.warning(f"mDNS advertisement unavailable: {error}")

        logger.info("*** Freedompro Local ready! ***")
        logger.info(f"Accessories: {len(local_api.registry)}")
        logger.info(f"API Server: http://0.0.0.0:{args.port}")
        logger.info(f"Documentation: http://0.0.0.0:{args.port}/docs")
        logger.info(f"Status: http://0.0.0.0:{args.port}/status")
        logger.info(f"Live Events: http://0.0.0.0:{args.port}/events")

        config = uvicorn.Config(
            app,
            host="0.0.0.0",
            port=args.port,
            log_config=build_uvicorn_log_config(args),
            access_log=True
        )
        server = uvicorn.Server(config)
        await server.serve()

    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down gracefully...")
    except Exception as e:
        logger.error(f"ERROR: Failed to start Freedompro Local: {e}")
        raise
    finally:
        if mdns_registered:
            await zeroconf_register.unregister_service_async()

        if local_api:
            logger.info("Performing cleanup...")
            local_api.host.close_listeners()
            await local_api.cleanup()

        if args.pid_file:
            pid_path = Path(args.pid_file)
            try:
                if pid_path.exists():
                    pid_path.unlink()
                    logger.info(f"PID file removed: {pid_path}")
            except OSError as e:
                logger.warning(f"Failed to remove PID file: {e}")


def configure_logging(args):
    """Configure the root logger for console, daemon or syslog mode."""
    if args.syslog:
        syslog_address = args.syslog
        if ':' in syslog_address and not syslog_address.startswith('/'):
            # Network address (host:port)
            host, port = syslog_address.rsplit(':', 1)
            syslog_address = (host, int(port))
        # else: Unix socket path (e.g., /dev/log)

        try:
            syslog_handler = logging.handlers.SysLogHandler(
                address=syslog_address,
                facility=logging.handlers.SysLogHandler.LOG_DAEMON
            )
            syslog_handler.setFormatter(logging.Formatter(
                'freedompro-local[%(process)d]: %(levelname)s %(message)s'
            ))
            root_logger = logging.getLogger()
            root_logger.setLevel(logging.INFO)
            root_logger.handlers = [syslog_handler]
            logger.info("Logging to syslog: %s", args.syslog)
        except OSError as e:
            # Fall back to console if syslog fails
            logging.basicConfig(
                level=logging.INFO,
                format='%(asctime)s %(levelname)s %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S',
                stream=sys.stdout,
                force=True
            )
            logger.error(f"Failed to connect to syslog ({args.syslog}): {e}")
            logger.info("Falling back to console logging")
    elif args.daemon:
        # No timestamp, syslog adds it
        logging.basicConfig(
            level=logging.INFO,
            format='%(levelname)s %(message)s',
            stream=sys.stdout,
            force=True
        )
    else:
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s %(levelname)s %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
            stream=sys.stdout,
            force=True
        )

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.info("Verbose logging enabled")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Freedompro Local - local accessory registry synchronized with the Freedompro cloud",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start with the API key from the environment
  FREEDOMPRO_API_KEY=... freedompro-local

  # Explicit key, custom port and database location
  python -m freedompro_local --api-key ... --port 8080 --state ./freedompro.db

  # Run as system daemon
  freedompro-local --daemon --pid-file /var/run/freedompro-local.pid

  # Send logs to a remote syslog server
  freedompro-local --syslog logserver.local:514

API Endpoints:
  GET  /status                   - Synchronization status
  GET  /accessories              - All accessories with cached state
  GET  /accessories/{uuid}/state - Cached on/off state
  PUT  /accessories/{uuid}/state - Switch an accessory, body {"on": true}
  GET  /events                   - Server-Sent Events for state changes
  POST /refresh                  - Re-run device discovery
        """
    )
    parser.add_argument("--api-key", default=os.environ.get('FREEDOMPRO_API_KEY'),
                        help="Freedompro API key (default: $FREEDOMPRO_API_KEY)")
    parser.add_argument("--base-url", default=DEFAULT_BASE_URL,
                        help=f"Freedompro API root (default: {DEFAULT_BASE_URL})")
    parser.add_argument("--state", default="~/.freedompro-local.db",
                        help="Path to accessory database (default: ~/.freedompro-local.db)")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT,
                        help=f"Port for REST API server (default: {DEFAULT_PORT})")
    parser.add_argument("--accessory-poll-interval", type=float, default=ACCESSORY_POLL_INTERVAL,
                        help=f"Seconds between per-accessory polls (default: {ACCESSORY_POLL_INTERVAL})")
    parser.add_argument("--global-poll-interval", type=float, default=GLOBAL_POLL_INTERVAL,
                        help=f"Seconds between global state polls (default: {GLOBAL_POLL_INTERVAL})")
    parser.add_argument("--reconnect-delay", type=float, default=1.0,
                        help="Base delay in seconds before reconnecting the event stream (default: 1)")
    parser.add_argument("--no-mdns", action="store_true",
                        help="Do not advertise the REST API via mDNS")
    parser.add_argument("--verbose", action="store_true",
                        help="Enable verbose logging (DEBUG level)")
    parser.add_argument("--daemon", action="store_true",
                        help="Run in daemon mode (structured logging for syslog, auto-enables --pid-file)")
    parser.add_argument("--syslog",
                        help="Send logs to syslog instead of stdout (e.g., /dev/log or remote.server:514)")
    parser.add_argument("--pid-file",
                        help="Write process ID to specified file (useful for daemon mode)")
    return parser


def main(argv=None):
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.api_key:
        parser.error("a Freedompro API key is required (--api-key or FREEDOMPRO_API_KEY)")

    # Daemon mode implies PID file if not specified
    if args.daemon and not args.pid_file:
        args.pid_file = "/var/run/freedompro-local.pid" if sys.platform != "win32" else "freedompro-local.pid"

    configure_logging(args)

    if args.pid_file:
        pid_path = Path(args.pid_file)
        try:
            pid_path.write_text(str(os.getpid()))
            logger.info(f"PID file written: {pid_path}")
        except OSError as e:
            logger.error(f"Failed to write PID file: {e}")
            sys.exit(1)

    try:
        asyncio.run(run_server(args))
    except KeyboardInterrupt:
        logger.info("*** Shutdown complete ***")
    except Exception as e:
        logger.error(f"ERROR: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
