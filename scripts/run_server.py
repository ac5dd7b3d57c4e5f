#!/usr/bin/env python3
"""
Startup script for the PhotoAuth authorization server

Loads configuration from PHOTOAUTH_* environment variables (or the
development configuration when PHOTOAUTH_ENVIRONMENT=development) and
serves the FastAPI app under uvicorn.
"""

import logging
import os
import sys

from photoauth.config import configure_logging, get_development_config, get_server_config
from photoauth.http_server import PhotoAuthHTTPServer


def main():
    """Main entry point"""
    environment = os.getenv("PHOTOAUTH_ENVIRONMENT", "production")

    if environment == "development":
        config = get_development_config()
    else:
        config = get_server_config()

    configure_logging(config.logging)
    logger = logging.getLogger(__name__)

    logger.info(f"Running in {environment.upper()} mode")
    logger.info(f"Registered clients: {[c.client_id for c in config.clients]}")

    server = PhotoAuthHTTPServer(config)

    logger.info(f"Server starting on {config.server.host}:{config.server.port}")
    logger.info("Available endpoints:")
    logger.info("  GET  /oauth/authorize - Authorization endpoint")
    logger.info("  POST /oauth/consent - Consent callback")
    logger.info("  POST /oauth/token - Token endpoint")
    logger.info("  POST /oauth/revoke - Token revocation")
    logger.info("  POST /oauth/introspect - Token introspection")
    logger.info("  GET  /.well-known/oauth-authorization-server - Server metadata")
    logger.info("  GET  /health - Health check")

    server.run()


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\nShutting down server...")
    except Exception as e:
        print(f"Server startup failed: {e}")
        sys.exit(1)
