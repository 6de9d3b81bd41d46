"""
Main orchestrator for Salsa Sync.

Loads configuration, reads the console's teams and users, and runs a single
reconciliation pass against the storage API before exiting.
"""

import sys
import logging
from datetime import datetime
from typing import Dict, Any, List, Optional

from salsa_sync.config import load_config, ConfigurationError
from salsa_sync.logging_setup import setup_logging
from salsa_sync.clients.base import ApiError
from salsa_sync.clients.console import ConsoleClient
from salsa_sync.clients.storage import StorageClient
from salsa_sync.reconcile import Reconciler, StorageReadError, SyncResult
from salsa_sync.signals import (
    CancellationToken,
    SyncCancelled,
    install_signal_handlers,
    restore_signal_handlers
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_UNEXPECTED = 1
EXIT_CONFIG = 2
EXIT_CONSOLE = 3
EXIT_STORAGE = 4
EXIT_CANCELLED = 130


class SyncError(Exception):
    """Base exception for sync errors."""
    pass


class ConsoleReadError(SyncError):
    """Raised when the console teams or users cannot be read."""
    pass


class SyncOrchestrator:
    """
    Runs one synchronization from the console to the storage API.

    Fatal failures are turned into exit codes; per-item failures only show up
    in the logs and in the summary.
    """

    def __init__(self, argv: Optional[List[str]] = None, config: Optional[Dict[str, Any]] = None):
        """
        Initialize sync orchestrator.

        Args:
            argv: Command-line arguments, without the program name
            config: Ready configuration dictionary; skips loading when given
        """
        self.argv = argv
        self.config = config
        self.cancellation = CancellationToken()
        self.console_client = None
        self.storage_client = None
        self.result = None
        self.start_time = None
        self.end_time = None

    def run(self) -> int:
        """
        Run the complete synchronization process.

        Returns:
            Exit code (0 for success, non-zero for failure)
        """
        previous_handlers = None
        try:
            self.start_time = datetime.now()

            if self.config is None:
                self.config = load_config(self.argv if self.argv is not None else [])

            setup_logging(self.config)
            previous_handlers = install_signal_handlers(self.cancellation)

            logger.info("Starting Salsa Sync")

            self._create_clients()
            teams, users = self._read_console()
            logger.debug(f"Teams read {teams}")
            logger.debug(f"Users read {users}")

            self.result = Reconciler(self.storage_client).synchronize(teams, users)

            self.end_time = datetime.now()
            self._log_sync_summary()
            return EXIT_OK

        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            return EXIT_CONFIG
        except ConsoleReadError as e:
            logger.critical(f"Failed to read from console: {e}")
            return EXIT_CONSOLE
        except StorageReadError as e:
            logger.critical(f"Failed to synchronize teams and users: {e}")
            return EXIT_STORAGE
        except SyncCancelled as e:
            logger.warning(f"{e}; changes already applied are kept")
            return EXIT_CANCELLED
        except Exception as e:
            logger.error(f"Unexpected error: {e}", exc_info=True)
            return EXIT_UNEXPECTED
        finally:
            restore_signal_handlers(previous_handlers)
            self._cleanup()

    def _create_clients(self):
        self.console_client = ConsoleClient.from_config(self.config, self.cancellation)
        self.storage_client = StorageClient.from_config(self.config, self.cancellation)

    def _read_console(self):
        """Read the authoritative teams and users."""
        try:
            teams = self.console_client.get_teams()
            users = self.console_client.get_users()
        except ApiError as e:
            raise ConsoleReadError(str(e)) from e
        return teams, users

    def _log_sync_summary(self):
        """Log final synchronization statistics."""
        result = self.result or SyncResult()
        runtime = (self.end_time - self.start_time).total_seconds()

        logger.info("=== Sync Summary ===")
        logger.info(f"Total runtime: {runtime:.2f} seconds")
        logger.info(f"Users created: {result.users_created}")
        logger.info(f"Users deleted: {result.users_deleted}")
        logger.info(f"Teams created: {result.teams_created}")
        logger.info(f"Teams deleted: {result.teams_deleted}")

        if result.failures:
            logger.warning(f"Sync completed with {result.failures} failed operations: {result.as_dict()}")
        else:
            logger.info("Sync completed successfully")

    def _cleanup(self):
        """Clean up resources."""
        for client in (self.console_client, self.storage_client):
            if client:
                client.close_connection()


def main(argv: Optional[List[str]] = None):
    """Main entry point for the application."""
    orchestrator = SyncOrchestrator(argv=argv if argv is not None else sys.argv[1:])
    sys.exit(orchestrator.run())


if __name__ == "__main__":
    main()
