#!/usr/bin/env python3
"""
Mint Activity Simulator - foreground daemon

Continuously runs mint, melt and swap cycles against a Cashu mint using
cdk-cli and Polar LND nodes, until SIGINT/SIGTERM. The cycle in flight
always finishes before the final session summary is printed.

Environment:
    MINT_URL              Mint under test (default: http://localhost:5551)
    CDK_CLI               Path to cdk-cli
    UNIT                  Unit label for log lines (default: sat)
    MIN_AMOUNT/MAX_AMOUNT Amount range (default: 10-500)
    MIN_DELAY/MAX_DELAY   Seconds between cycles (default: 5-30)
    MIN_BALANCE_FOR_SPEND Melt/swap floor (default: 20)
    FUNDING_NODE, INVOICE_NODE, BACKUP_NODE  Polar containers
    LND_NODES             Comma list of plain-lnd containers (others are litd)
"""

import logging
import signal
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from mintsim.config import ConfigError, SimConfig
from mintsim.controller import build_simulation
from mintsim.events import configure_logging

logger = logging.getLogger("mint-sim")


def main() -> int:
    configure_logging()

    try:
        config = SimConfig.from_env()
    except ConfigError as e:
        logger.error(str(e))
        return 1

    simulation = build_simulation(config)

    def shutdown(signum, frame):
        logger.info("Shutdown signal received")
        simulation.scheduler.request_stop()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    simulation.scheduler.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
