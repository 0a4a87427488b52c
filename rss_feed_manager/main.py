"""
Main entry point for RSS Feed Manager.

Loads the configuration, runs synchronization passes and persists the
tracking state after each one.
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from urllib.parse import urlparse

import coloredlogs
import yaml

from rss_feed_manager.config import AppConfig, load_config
from rss_feed_manager.coordinator import RunCoordinator, RunSummary
from rss_feed_manager.dispatcher import Dispatcher
from rss_feed_manager.notifier import Notifier
from rss_feed_manager.rss_parser import FeedParser
from rss_feed_manager.slack import SlackNotifier
from rss_feed_manager.storage import StateStore, StateStoreError, create_store
from rss_feed_manager.telegram import TelegramNotifier

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_NOTIFIER_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_STATE_ERROR = 3


def redact_proxy_url(proxy_url: str) -> str:
    """
    Redact credentials from a proxy URL for safe logging.

    Parameters
    ----------
    proxy_url : str
        The proxy URL potentially containing credentials.

    Returns
    -------
    str
        The proxy URL with password redacted.
    """
    try:
        parsed = urlparse(proxy_url)
        if parsed.password:
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            if parsed.username:
                netloc = f"{parsed.username}:****@{netloc}"
            return f"{parsed.scheme}://{netloc}{parsed.path}"
        return proxy_url
    except ValueError:
        return "<proxy url>"


def create_notifier(config: AppConfig) -> Notifier:
    """
    Build the notifier selected in the configuration.

    Parameters
    ----------
    config : AppConfig
        Application configuration.

    Returns
    -------
    Notifier
        Slack or Telegram notifier.
    """
    proxy_url = config.defaults.proxy
    if config.slack is not None:
        return SlackNotifier(
            config.slack,
            proxy_url=proxy_url,
            timeout=config.defaults.request_timeout,
        )
    return TelegramNotifier(config.telegram, proxy_url=proxy_url)


class FeedManager:
    """
    Main RSS Feed Manager application.

    Owns the components and runs synchronization passes.
    """

    def __init__(self, config_path: str | Path):
        """
        Initialize the feed manager.

        Parameters
        ----------
        config_path : str | Path
            Path to the YAML configuration file.
        """
        self.config = load_config(config_path)
        self.store: StateStore | None = None
        self.parser: FeedParser | None = None
        self.notifier: Notifier | None = None
        self.coordinator: RunCoordinator | None = None
        self._running = False
        self._stop_event = asyncio.Event()

    async def start(self) -> bool:
        """
        Initialize components.

        Returns
        -------
        bool
            False if the notifier connection test failed.

        Raises
        ------
        StateStoreError
            If the state store cannot be opened.
        """
        logger.info("Starting RSS Feed Manager")

        self.store = create_store(self.config.storage)
        await self.store.initialize()

        proxy_url = self.config.defaults.proxy
        if proxy_url:
            logger.info("Using proxy: %s", redact_proxy_url(proxy_url))

        self.parser = FeedParser(
            timeout=self.config.defaults.request_timeout,
            max_retries=self.config.defaults.max_retries,
            user_agent=self.config.defaults.user_agent,
            proxy_url=proxy_url,
        )

        self.notifier = create_notifier(self.config)
        if not await self.notifier.test_connection():
            logger.error("Failed to connect to notifier, exiting")
            return False

        self.coordinator = RunCoordinator(
            self.config.channels,
            self.parser,
            Dispatcher(self.notifier, rate_limit_delay=self.config.defaults.rate_limit_delay),
            policy=self.config.delivery.policy,
        )
        self._running = True
        return True

    async def run_once(self) -> RunSummary:
        """
        Run one synchronization pass and persist the state.

        Returns
        -------
        RunSummary
            Run counters.

        Raises
        ------
        StateStoreError
            If the state cannot be loaded or saved.
        """
        if not self.store or not self.coordinator:
            raise RuntimeError("Components not initialized")

        logger.info("Loading state")
        state = await self.store.load_state()

        summary = await self.coordinator.run(state)

        logger.info("Saving updated state")
        await self.store.save_state(state)

        logger.info(
            "Summary: Processed %d feeds, found %d new posts "
            "(%d delivered, %d delivery failures, %d fetch failures) in %.1fs",
            summary.feeds_processed,
            summary.items_found,
            summary.items_delivered,
            summary.delivery_failures,
            summary.fetch_failures,
            summary.duration,
        )
        return summary

    async def run_forever(self, interval: int) -> None:
        """
        Run synchronization passes every ``interval`` seconds until stopped.

        Parameters
        ----------
        interval : int
            Seconds between the start of two passes.

        Raises
        ------
        StateStoreError
            If the state cannot be loaded or saved.
        """
        logger.info("Running every %d seconds", interval)
        while self._running:
            try:
                await self.run_once()
            except StateStoreError:
                raise
            except Exception as e:
                logger.error("Run failed: %s", e)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except TimeoutError:
                pass

    def request_stop(self) -> None:
        """Ask a running loop to finish after the current pass."""
        self._running = False
        self._stop_event.set()

    async def stop(self) -> None:
        """Stop the feed manager and close components."""
        logger.info("Stopping RSS Feed Manager")
        self.request_stop()

        if self.parser:
            await self.parser.close()
            self.parser = None
        if self.notifier:
            await self.notifier.close()
            self.notifier = None
        if self.store:
            await self.store.close()
            self.store = None

        logger.info("RSS Feed Manager stopped")


async def run(manager: FeedManager, once: bool = False) -> int:
    """
    Start the manager, run it and stop it.

    Parameters
    ----------
    manager : FeedManager
        Configured manager.
    once : bool
        Run a single pass even if a check interval is configured.

    Returns
    -------
    int
        Process exit code.
    """
    try:
        if not await manager.start():
            return EXIT_NOTIFIER_ERROR

        interval = manager.config.defaults.check_interval
        if interval and not once:
            await manager.run_forever(interval)
        else:
            await manager.run_once()
    except StateStoreError as e:
        logger.error("State error: %s", e)
        return EXIT_STATE_ERROR
    finally:
        await manager.stop()

    return EXIT_OK


def setup_logging(verbose: bool = False) -> None:
    """
    Configure application logging.

    Parameters
    ----------
    verbose : bool
        If True, set log level to DEBUG.
    """
    level = logging.DEBUG if verbose else logging.INFO

    coloredlogs.install(
        level=level,
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Reduce noise from third-party libraries
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("telegram").setLevel(logging.WARNING)


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Forward new RSS/Atom feed items to chat channels",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "-c",
        "--config",
        default="config.yaml",
        help="Path to configuration file",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single pass even if check_interval is configured",
    )
    args = parser.parse_args(argv)

    setup_logging(args.verbose)

    try:
        manager = FeedManager(args.config)
    except (OSError, ValueError, yaml.YAMLError) as e:
        # pydantic.ValidationError is a ValueError
        logger.error("Failed to load config: %s", e)
        sys.exit(EXIT_CONFIG_ERROR)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def signal_handler():
        logger.info("Received shutdown signal")
        manager.request_stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        exit_code = loop.run_until_complete(run(manager, once=args.once))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        exit_code = EXIT_OK
    finally:
        loop.close()

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
