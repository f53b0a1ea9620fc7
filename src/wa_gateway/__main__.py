"""
WhatsApp Session Gateway - Entry Point

Starts the HTTP/WebSocket control surface. The whatsapp-web.js bridge must
already be running at the configured bridge URLs.
"""

import asyncio
import argparse
import logging

from .config import load_config
from .server import GatewayServer, build_controller

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def main():
    parser = argparse.ArgumentParser(
        description="WhatsApp Session Gateway",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start with gateway.yaml from the current directory (or defaults)
  python -m wa_gateway

  # Explicit configuration file
  python -m wa_gateway --config /etc/wa-gateway/gateway.yaml

  # Override the listen port and enable debug logging
  python -m wa_gateway --port 3040 --debug
"""
    )

    parser.add_argument(
        '--config', '-c',
        help='Path to gateway.yaml'
    )

    parser.add_argument(
        '--host',
        help='Listen address (default: from config, 0.0.0.0)'
    )

    parser.add_argument(
        '--port', '-p',
        type=int,
        help='Listen port (default: from config, 3030)'
    )

    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )

    args = parser.parse_args()

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    config = load_config(args.config)
    if args.host:
        config.server.host = args.host
    if args.port:
        config.server.port = args.port

    controller = build_controller(config)
    logger.info(f"Loaded {len(controller.registry)} session(s) from {config.sessions_path}")

    server = GatewayServer(
        controller,
        host=config.server.host,
        port=config.server.port,
        cors_origins=config.server.cors_origins,
    )
    await server.start()


def run():
    """Entry point for console script"""
    asyncio.run(main())


if __name__ == '__main__':
    run()
