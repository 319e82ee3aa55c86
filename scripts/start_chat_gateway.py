#!/usr/bin/env python3
"""
QVoiceTxt Gateway - HTTP API server for the Agent Q chat session.

Usage:
    python scripts/start_chat_gateway.py

Environment Variables:
    QVOICE_CHAT_HOST     - Host to bind to (default: 127.0.0.1)
    QVOICE_CHAT_PORT     - Port to listen on (default: 8081)
    GEMINI_API_KEY       - Generative API key (optional; simulated agent without it)
    QVOICE_STATE_DIR     - State directory for the message store
    LOG_LEVEL            - Logging level (default: INFO)

Example curl commands:
    # Session status
    curl -s http://127.0.0.1:8081/v1/session | jq

    # Send a message
    curl -s http://127.0.0.1:8081/v1/messages \\
      -H "Content-Type: application/json" \\
      -d '{"text":"/remindme 1m \\"call Sam\\""}' | jq

    # Read history
    curl -s http://127.0.0.1:8081/v1/messages | jq
"""

import os
import socket
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


def check_port_available(host: str, port: int) -> bool:
    """Check if a port is available for binding.

    Args:
        host: Host address to check
        port: Port number to check

    Returns:
        True if port is available, False if already in use
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.settimeout(1)
    try:
        sock.bind((host, port))
        return True
    except OSError:
        return False
    finally:
        sock.close()


def main():
    """Start the QVoiceTxt gateway server."""
    import uvicorn

    from agent_logging import setup_logging
    from qvoice_gateway.server import create_app
    from qvoice_orchestrator.config import Config

    try:
        config = Config.from_env()
        config.validate()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    logger = setup_logging("GATEWAY", log_dir=str(config.log_dir / "gateway"), log_level=config.log_level)

    if not check_port_available(config.host, config.port):
        logger.error("=" * 60)
        logger.error(f"ERROR: Port {config.port} is already in use")
        logger.error("=" * 60)
        logger.error("To use a different port, set environment variable:")
        logger.error("  export QVOICE_CHAT_PORT=8082")
        sys.exit(1)

    logger.info("=" * 60)
    logger.info("QVoiceTxt Gateway")
    logger.info("=" * 60)
    logger.info(f"Server:   http://{config.host}:{config.port}")
    logger.info(f"Messages: http://{config.host}:{config.port}/v1/messages")
    logger.info(f"Health:   http://{config.host}:{config.port}/health")
    logger.info(f"Agent:    {'live' if config.is_live else 'offline (simulated)'}")
    logger.info("=" * 60)

    uvicorn.run(
        create_app(config),
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
        access_log=True,
    )


if __name__ == "__main__":
    main()
