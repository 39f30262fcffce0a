"""
Vault Server - Main entry point.

This module starts the Vault HTTP server:
- Loads and validates the JSON configuration
- Configures logging (JSON or text)
- Serves the FastAPI app with uvicorn

Usage:
    python -m vaultapi.vault_server.main --config config.json

Exit codes: 0 on clean shutdown, 1 when the configuration file cannot be
opened, 2 when it cannot be parsed or fails validation.

Invariants:
    - Logging is configured before anything else logs
    - Secrets from the configuration are never logged

How to change safely:
    - Keep the exit codes stable; deployment scripts rely on them
"""

from __future__ import annotations

import argparse
import logging
import sys

import json_log_formatter
import uvicorn

from .api import create_app
from .config import ServerConfig
from .errors import ConfigError

logger = logging.getLogger(__name__)


def setup_logging(level_name: str = "INFO", log_format: str = "json") -> None:
    """Configure root logging.

    Args:
        level_name: Logging level name
        log_format: "json" or "text"
    """
    level = getattr(logging, level_name.upper(), logging.INFO)

    if log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("aio_pika").setLevel(logging.WARNING)
    logging.getLogger("aiormq").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="vault-server", description="Vault API server")
    parser.add_argument("--config", default=None, help="Configuration file (default: VAULT_CONFIG or config.json)")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    try:
        config = ServerConfig.load(args.config)
        config.validate()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return e.exit_code

    setup_logging(config.observability.log_level, config.observability.log_format)
    config.log_config()

    logger.info("Starting Vault server", extra={"host": config.bind.host, "port": config.bind.port})
    uvicorn.run(
        create_app(config),
        host=config.bind.host,
        port=config.bind.port,
        log_config=None,
    )
    logger.info("Vault server exited")
    return 0


if __name__ == "__main__":
    sys.exit(main())
