#!/usr/bin/env python3
"""
Staff Loans Service Entry Point

Starts the FastAPI server with the staff loans engine.
"""

import sys

import uvicorn

from staff_loans.config import get_config
from staff_loans.logging_config import setup_logging


def run_server(host: str, port: int, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "staff_loans.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(config.log_level, config.log_format)

    logger.info(f"Starting staff loans service on {config.api_host}:{config.api_port}")
    logger.info(f"Storage: {config.database_url}")
    logger.info(
        "Approval engine: " + (config.approval_engine_url or "in-process")
    )

    try:
        run_server(host=config.api_host, port=config.api_port)
    except KeyboardInterrupt:
        logger.info("Shutting down staff loans service")
    except Exception as e:
        logger.error(f"Error starting server: {e}")
        sys.exit(1)
