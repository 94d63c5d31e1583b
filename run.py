#!/usr/bin/env python3
"""
Bank Ledger Entry Point

Starts the FastAPI server with settings taken from BANK_LEDGER_* environment
variables (or .env).
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from bank_ledger.api import run_server
from bank_ledger.config import get_config
from bank_ledger.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(config.log_level, log_format=config.log_format)
    logger.info(f"Starting Bank Ledger API on {config.api_host}:{config.api_port}")
    logger.info(f"Storage: {config.database_url}")

    try:
        run_server(host=config.api_host, port=config.api_port, debug=False)
    except KeyboardInterrupt:
        logger.info("Shutting down Bank Ledger API")
    except Exception as e:
        logger.error(f"Error starting server: {e}", exc_info=True)
        sys.exit(1)
