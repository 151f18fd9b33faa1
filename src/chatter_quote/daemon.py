"""Long-running quote daemon: seeds the store, runs the engine until signalled."""

import fcntl
import logging
import os
import signal
import time
from pathlib import Path

from . import db
from .bootstrap import bootstrap_store
from .config import Config, load_config
from .delivery import make_delivery_sink
from .engine import QuoteEngine

logger = logging.getLogger("chatter_quote.daemon")

# Graceful shutdown flag
_shutdown_requested = False


def _signal_handler(signum, frame):
    """Handle shutdown signals."""
    global _shutdown_requested
    logger.info("Received signal %d, shutting down gracefully...", signum)
    _shutdown_requested = True


def run_daemon(config: Config, dry_run: bool = False) -> None:
    """
    Run the quote engine as a daemon.
    Handles graceful shutdown via SIGTERM/SIGINT.
    """
    global _shutdown_requested
    _shutdown_requested = False

    # Acquire exclusive lock to prevent multiple daemon instances
    lock_file = open(config.lock_path, "w")
    try:
        fcntl.flock(lock_file, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
        logger.error("Another quote daemon is already running. Exiting.")
        lock_file.close()
        return

    # Write PID to lock file for debugging
    lock_file.write(str(os.getpid()))
    lock_file.flush()

    signal.signal(signal.SIGTERM, _signal_handler)
    signal.signal(signal.SIGINT, _signal_handler)

    logger.info("STARTUP Quote daemon starting (pid: %d)", os.getpid())
    logger.info("STARTUP Database: %s", config.db_path)
    logger.info("STARTUP Schedule sync interval: %ds", config.engine.sync_interval)
    logger.info(
        "STARTUP Send delay: %ds + random 0..%ds",
        config.engine.send_delay_min, config.engine.send_delay_max,
    )
    logger.info("STARTUP Mark quotes used: %s", config.engine.mark_used)
    logger.info(
        "STARTUP Tracking: %s (%s)",
        config.tracking.backend,
        config.tracking.dir if config.tracking.backend == "file" else config.db_path,
    )
    logger.info("STARTUP Delivery: %s", "dry-run" if dry_run or not config.talk.enabled else "talk")

    engine = None
    try:
        config.db_path.parent.mkdir(parents=True, exist_ok=True)
        db.init_db(config.db_path)

        try:
            bootstrap_store(config)
        except Exception as e:
            logger.warning("Bootstrap import failed: %s", e)

        engine = QuoteEngine(config, sink=make_delivery_sink(config, dry_run=dry_run))
        engine.start()
        logger.info("STARTUP All done with setup; scheduler takes over from here")

        while not _shutdown_requested:
            time.sleep(1)
    finally:
        if engine is not None:
            engine.stop(wait=True)
        fcntl.flock(lock_file, fcntl.LOCK_UN)
        lock_file.close()

    logger.info("Shutdown complete.")


def main():
    """Entry point for the daemon script."""
    import argparse

    from .logging_setup import setup_logging

    parser = argparse.ArgumentParser(description="chatter-quote daemon")
    parser.add_argument("-c", "--config", help="Path to config file")
    parser.add_argument("--dry-run", action="store_true", help="Log quotes instead of sending them")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    args = parser.parse_args()

    config = load_config(Path(args.config) if args.config else None)
    setup_logging(config, verbose=args.verbose, daemon_mode=True)
    run_daemon(config, dry_run=args.dry_run)


if __name__ == "__main__":
    main()
