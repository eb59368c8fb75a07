"""
Command-line entry point for running the market simulation.
"""
import argparse
import logging
import signal
import sys
from pathlib import Path

from zux_ledger.config import SimulationConfig
from zux_ledger.simulation import Simulation

logger = logging.getLogger(__name__)


def build_config(args) -> SimulationConfig:
    if args.config and Path(args.config).exists():
        config = SimulationConfig.from_file(args.config)
    else:
        config = SimulationConfig.default()

    # Override config with CLI arguments
    if args.ticks is not None:
        config.run.ticks = args.ticks
    if args.accounts is not None:
        config.funding.account_count = args.accounts
    if args.difficulty is not None:
        config.chain.difficulty = args.difficulty
    if args.seed is not None:
        config.run.seed = args.seed
    if args.metrics_port is not None:
        config.monitoring.enabled = True
        config.monitoring.port = args.metrics_port
    return config


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(description='Run the ZUX/USDZ market simulation')
    parser.add_argument('--config', type=str, help='Path to config file')
    parser.add_argument('--ticks', type=int, help='Number of trading ticks')
    parser.add_argument('--accounts', type=int, help='Number of simulated wallets')
    parser.add_argument('--difficulty', type=int,
                        help='Leading zero hex characters required per block')
    parser.add_argument('--seed', type=int, help='Seed for agent randomness')
    parser.add_argument('--metrics-port', type=int,
                        help='Expose Prometheus metrics on this port')
    parser.add_argument('--log-level', default='INFO', help='Logging level')
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    config = build_config(args)
    simulation = Simulation(config)
    if simulation.monitor:
        simulation.monitor.start_server()

    def signal_handler(signum, frame):
        logger.info("Received shutdown signal")
        simulation.stop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        signal.signal(sig, signal_handler)

    try:
        simulation.run()
    finally:
        simulation.close()
        simulation.log_status()
        valid = simulation.chain.verify_chain()
        logger.info(f"Chain verification: {'passed' if valid else 'FAILED'}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
