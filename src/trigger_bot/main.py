"""
Trigger Bot - Main Entry Point

Runs the trigger scheduler: every interval, evaluate each ACTIVE trigger
and execute the swap for those whose condition holds.

Usage:
    python -m trigger_bot.main                 # Run the scheduler (dry run by default)
    python -m trigger_bot.main --live          # Settle real swaps
    python -m trigger_bot.main --once          # Run a single tick and exit
    python -m trigger_bot.main --check ID      # Evaluate one trigger, print the trail
    python -m trigger_bot.main --execute ID    # Evaluate one trigger, execute on a match

Environment Variables:
    DATABASE_URL                    PostgreSQL connection string
    LOG_LEVEL                       Logging level (DEBUG/INFO/WARNING/ERROR)
    DRY_RUN                         "true" for paper swaps (default: true); with
                                    DATABASE_URL set, triggers are read but never written
    CHECK_INTERVAL_SECONDS          Seconds between ticks (default: 30)
    INTER_TRIGGER_DELAY_SECONDS     Delay between triggers in a tick (default: 1)
    MAX_CONCURRENT_TRIGGERS         >1 evaluates triggers in parallel (default: 1)
    SETTLE_TIMEOUT_SECONDS          Bound on one settlement (default: 120)
    METRIC_TTL_<METRIC>_SECONDS     Cache TTL override, e.g. METRIC_TTL_RSI_SECONDS
    COINGECKO_API_KEY               CoinGecko demo API key (optional)
    ETHERSCAN_API_KEY               Enables GAS conditions
    TAAPI_SECRET                    Enables RSI and MA conditions
    SWAP_EXECUTOR_URL               Settlement service (required when live)
    SWAP_EXECUTOR_TOKEN             Bearer token for the settlement service
    TELEGRAM_BOT_TOKEN              Telegram bot token for notifications
    TELEGRAM_CHAT_ID                Operator chat for alerts
    PID_FILE                        Singleton lock file (default: /tmp/trigger-bot.pid)
"""

from __future__ import annotations

import argparse
import asyncio
import atexit
import fcntl
import logging
import os
import signal
import sys
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Generator, Optional

# Configure logging before imports
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

from trigger_bot.core import SchedulerConfig, SchedulerLoop, TriggerEngine  # noqa: E402
from trigger_bot.execution import (  # noqa: E402
    CoordinatorConfig,
    ExecutionCoordinator,
    HttpSwapExecutor,
    PaperSwapExecutor,
)
from trigger_bot.market import (  # noqa: E402
    CoinGeckoClient,
    EtherscanGasClient,
    FearGreedClient,
    MetricCache,
    MetricCacheConfig,
    TaapiClient,
    build_provider_set,
    default_ttls,
)
from trigger_bot.monitoring import AlertManager, NullNotifier, TelegramNotifier  # noqa: E402
from trigger_bot.storage import (  # noqa: E402
    Database,
    DatabaseConfig,
    InMemoryTriggerStore,
    MetricKind,
    PostgresTriggerStore,
    ShadowTriggerStore,
    PredicateError,
    TriggerNotActiveError,
)

DEFAULT_PID_FILE = "/tmp/trigger-bot.pid"


class SingletonBotError(Exception):
    """Raised when another bot instance is already running."""
    pass


@contextmanager
def singleton_lock(pid_file: str = DEFAULT_PID_FILE) -> Generator[None, None, None]:
    """
    Context manager that ensures only one scheduler runs on this host.

    Uses file locking (fcntl.LOCK_EX | fcntl.LOCK_NB). The lock is released
    when the process exits.

    Raises:
        SingletonBotError: If another instance is already running
    """
    pid_path = Path(pid_file)

    # Read existing PID before opening (which would truncate)
    existing_pid = None
    try:
        existing_pid = pid_path.read_text().strip()
    except FileNotFoundError:
        pass

    fp = open(pid_path, "a+")

    try:
        fcntl.flock(fp.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        fp.close()
        if existing_pid:
            raise SingletonBotError(
                f"Another bot instance is already running (PID: {existing_pid}). "
                f"Kill it with: kill {existing_pid}"
            )
        raise SingletonBotError(
            "Another bot instance is already running. "
            "Check for existing processes: ps aux | grep trigger_bot"
        )

    # We have the lock - now truncate and write our PID
    fp.seek(0)
    fp.truncate()
    fp.write(str(os.getpid()))
    fp.flush()

    def cleanup():
        try:
            fcntl.flock(fp.fileno(), fcntl.LOCK_UN)
            fp.close()
            pid_path.unlink(missing_ok=True)
        except (OSError, ValueError):
            pass

    atexit.register(cleanup)

    try:
        logger.info(f"Acquired singleton lock (PID: {os.getpid()}, file: {pid_file})")
        yield
    finally:
        cleanup()
        atexit.unregister(cleanup)


def _env_bool(name: str, default: bool) -> bool:
    return os.environ.get(name, "true" if default else "false").lower() == "true"


def _metric_ttls_from_env() -> Dict[MetricKind, float]:
    ttls = default_ttls()
    for metric in MetricKind:
        raw = os.environ.get(f"METRIC_TTL_{metric.value}_SECONDS")
        if raw:
            ttls[metric] = float(raw)
    return ttls


@dataclass
class BotConfig:
    """Complete bot configuration."""

    # Database
    database_url: str = ""

    # Mode
    dry_run: bool = True

    # Scheduling
    check_interval_seconds: float = 30.0
    inter_trigger_delay_seconds: float = 1.0
    max_concurrent_triggers: int = 1

    # Execution
    settle_timeout_seconds: float = 120.0
    swap_executor_url: Optional[str] = None
    swap_executor_token: Optional[str] = None

    # Metric sources
    metric_ttls: Dict[MetricKind, float] = field(default_factory=default_ttls)
    coingecko_api_key: Optional[str] = None
    etherscan_api_key: Optional[str] = None
    taapi_secret: Optional[str] = None

    # Alerts
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None

    pid_file: str = DEFAULT_PID_FILE

    @classmethod
    def from_env(cls) -> "BotConfig":
        """Load configuration from environment variables."""
        return cls(
            database_url=os.environ.get("DATABASE_URL", ""),
            dry_run=_env_bool("DRY_RUN", True),
            check_interval_seconds=float(os.environ.get("CHECK_INTERVAL_SECONDS", "30")),
            inter_trigger_delay_seconds=float(os.environ.get("INTER_TRIGGER_DELAY_SECONDS", "1")),
            max_concurrent_triggers=int(os.environ.get("MAX_CONCURRENT_TRIGGERS", "1")),
            settle_timeout_seconds=float(os.environ.get("SETTLE_TIMEOUT_SECONDS", "120")),
            swap_executor_url=os.environ.get("SWAP_EXECUTOR_URL"),
            swap_executor_token=os.environ.get("SWAP_EXECUTOR_TOKEN"),
            metric_ttls=_metric_ttls_from_env(),
            coingecko_api_key=os.environ.get("COINGECKO_API_KEY"),
            etherscan_api_key=os.environ.get("ETHERSCAN_API_KEY"),
            taapi_secret=os.environ.get("TAAPI_SECRET"),
            telegram_bot_token=os.environ.get("TELEGRAM_BOT_TOKEN"),
            telegram_chat_id=os.environ.get("TELEGRAM_CHAT_ID"),
            pid_file=os.environ.get("PID_FILE", DEFAULT_PID_FILE),
        )

    def validate(self) -> list[str]:
        """Configuration problems that prevent startup."""
        problems = []
        if not self.dry_run:
            if not self.database_url:
                problems.append("Live trading requires DATABASE_URL")
            if not self.swap_executor_url:
                problems.append("Live trading requires SWAP_EXECUTOR_URL")
        if self.check_interval_seconds <= 0:
            problems.append("CHECK_INTERVAL_SECONDS must be positive")
        if self.max_concurrent_triggers < 1:
            problems.append("MAX_CONCURRENT_TRIGGERS must be at least 1")
        if self.settle_timeout_seconds <= 0:
            problems.append("SETTLE_TIMEOUT_SECONDS must be positive")
        return problems


class TriggerBot:
    """
    Main bot orchestrator.

    Manages the lifecycle of all components:
    - Database connection and trigger store
    - Metric sources and cache
    - Swap executor, coordinator and notifier
    - Scheduler loop
    """

    def __init__(self, config: BotConfig):
        self.config = config
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._started_at: Optional[datetime] = None

        # Components (initialized by setup())
        self._db: Optional[Database] = None
        self._store = None
        self._clients: list = []
        self._executor = None
        self._alert_manager: Optional[AlertManager] = None
        self._engine: Optional[TriggerEngine] = None
        self._scheduler: Optional[SchedulerLoop] = None

    @property
    def engine(self) -> Optional[TriggerEngine]:
        return self._engine

    @property
    def scheduler(self) -> Optional[SchedulerLoop]:
        return self._scheduler

    async def setup(self) -> None:
        """Build every component. Safe to call once."""
        await self._init_store()
        cache = self._init_market()
        coordinator = self._init_execution()

        self._engine = TriggerEngine(self._store, cache, coordinator)
        self._scheduler = SchedulerLoop(
            self._engine,
            SchedulerConfig(
                interval_seconds=self.config.check_interval_seconds,
                inter_trigger_delay_seconds=self.config.inter_trigger_delay_seconds,
                max_concurrency=self.config.max_concurrent_triggers,
                stop_timeout_seconds=self.config.settle_timeout_seconds + 60,
            ),
            alerts=self._alert_manager,
        )

    async def _init_store(self) -> None:
        if self.config.database_url:
            self._db = Database(DatabaseConfig(url=self.config.database_url))
            await self._db.initialize()
            if not await self._db.health_check():
                raise RuntimeError("Database health check failed")
            store = PostgresTriggerStore(self._db)
            if self.config.dry_run:
                self._store = ShadowTriggerStore(store)
                logger.info("Trigger store: PostgreSQL (read-only, dry-run writes kept in memory)")
            else:
                self._store = store
                logger.info("Trigger store: PostgreSQL")
        else:
            self._store = InMemoryTriggerStore()
            logger.warning("DATABASE_URL not set; using an empty in-memory trigger store")

    def _init_market(self) -> MetricCache:
        coingecko = CoinGeckoClient(api_key=self.config.coingecko_api_key)
        fear_greed = FearGreedClient()
        gas = EtherscanGasClient(self.config.etherscan_api_key) if self.config.etherscan_api_key else None
        indicators = TaapiClient(self.config.taapi_secret) if self.config.taapi_secret else None
        self._clients = [c for c in (coingecko, fear_greed, gas, indicators) if c is not None]

        providers = build_provider_set(coingecko, fear_greed=fear_greed, gas=gas, indicators=indicators)
        return MetricCache(providers, MetricCacheConfig(ttl_seconds=dict(self.config.metric_ttls)))

    def _init_execution(self) -> ExecutionCoordinator:
        if self.config.dry_run:
            self._executor = PaperSwapExecutor()
        else:
            self._executor = HttpSwapExecutor(
                self.config.swap_executor_url,
                token=self.config.swap_executor_token,
            )

        notifier = NullNotifier()
        if self.config.telegram_bot_token:
            self._alert_manager = AlertManager(
                telegram_bot_token=self.config.telegram_bot_token,
                telegram_chat_id=self.config.telegram_chat_id,
            )
            notifier = TelegramNotifier(self._alert_manager)

        return ExecutionCoordinator(
            self._store,
            self._executor,
            notifier=notifier,
            config=CoordinatorConfig(settle_timeout_seconds=self.config.settle_timeout_seconds),
            alerts=self._alert_manager,
        )

    async def start(self) -> None:
        """Run the scheduler until a shutdown signal arrives."""
        logger.info("=" * 60)
        logger.info("TRIGGER BOT")
        logger.info("=" * 60)
        logger.info(f"Trading: {'DRY RUN' if self.config.dry_run else 'LIVE'}")
        logger.info(f"Interval: {self.config.check_interval_seconds}s")
        logger.info("=" * 60)

        self._running = True
        self._started_at = datetime.now(timezone.utc)
        self._shutdown_event.clear()

        # Setup signal handlers FIRST to catch early signals
        self._setup_signal_handlers()

        try:
            await self.setup()

            if self._shutdown_event.is_set():
                logger.info("Shutdown requested during startup")
                return

            await self._scheduler.start()
            logger.info("Bot started successfully. Press Ctrl+C to stop")

            await self._shutdown_event.wait()

        except Exception as e:
            logger.exception(f"Fatal error: {e}")
            raise
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stop the bot gracefully."""
        if self._scheduler:
            try:
                await self._scheduler.stop()
            except Exception as e:
                logger.warning(f"Error stopping scheduler: {e}")

        await self.close()
        if self._running:
            self._running = False
            logger.info("Shutdown complete")

    async def close(self) -> None:
        """Release network clients and the database pool."""
        for client in self._clients:
            try:
                await client.close()
            except Exception as e:
                logger.warning(f"Error closing {type(client).__name__}: {e}")
        self._clients = []

        if isinstance(self._executor, HttpSwapExecutor):
            try:
                await self._executor.close()
            except Exception as e:
                logger.warning(f"Error closing swap executor: {e}")

        if self._db:
            try:
                await self._db.close()
            except Exception as e:
                logger.warning(f"Error closing database: {e}")
            self._db = None

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def handle_signal(sig):
            logger.info(f"Received signal {sig}")
            self._shutdown_event.set()

        try:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Trigger Bot",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--dry-run",
        dest="dry_run",
        action="store_const",
        const=True,
        help="Paper swaps only (default unless DRY_RUN=false)",
    )
    mode.add_argument(
        "--live",
        dest="dry_run",
        action="store_const",
        const=False,
        help="Settle real swaps through SWAP_EXECUTOR_URL",
    )

    action = parser.add_mutually_exclusive_group()
    action.add_argument("--once", action="store_true", help="Run a single tick and exit")
    action.add_argument("--check", metavar="TRIGGER_ID", help="Evaluate one trigger without executing")
    action.add_argument("--execute", metavar="TRIGGER_ID", help="Evaluate one trigger and execute on a match")

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override log level",
    )
    return parser.parse_args(argv)


async def run_manual(bot: TriggerBot, args: argparse.Namespace) -> int:
    """Handle --once, --check and --execute."""
    await bot.setup()
    try:
        if args.once:
            stats = await bot.scheduler.run_tick()
            print(stats.to_dict())
            return 1 if stats.aborted else 0

        if args.check:
            evaluation = await bot.engine.check(args.check)
            print(f"Trigger {args.check}: {evaluation.summary()}")
            return 0

        outcome = await bot.engine.execute_now(args.execute)
        if not outcome.matched:
            print(f"Trigger {args.execute} not executed: {outcome.evaluation.summary()}")
            return 0
        result = outcome.execution
        if result is None:
            print(f"Trigger {args.execute} matched but could not be executed this time")
            return 1
        if result.success:
            print(f"Trigger {args.execute} executed: tx {result.tx_reference}")
            return 0
        print(f"Trigger {args.execute} failed: {result.error}")
        return 1

    except (TriggerNotActiveError, PredicateError) as e:
        logger.error(str(e))
        return 1
    finally:
        await bot.close()


async def main_async(args: argparse.Namespace) -> int:
    """Async main function."""
    config = BotConfig.from_env()

    if args.dry_run is not None:
        config.dry_run = args.dry_run

    problems = config.validate()
    if problems:
        for problem in problems:
            logger.error(problem)
        return 1

    bot = TriggerBot(config)

    if args.once or args.check or args.execute:
        return await run_manual(bot, args)

    try:
        await bot.start()
        return 0
    except KeyboardInterrupt:
        logger.info("Shutdown requested")
        return 0
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    if args.log_level:
        logging.getLogger().setLevel(getattr(logging, args.log_level))

    # Manual checks may run beside a live scheduler; the scheduler itself may not
    if args.check or args.execute:
        try:
            return asyncio.run(main_async(args))
        except KeyboardInterrupt:
            return 0

    pid_file = os.environ.get("PID_FILE", DEFAULT_PID_FILE)
    try:
        with singleton_lock(pid_file):
            try:
                return asyncio.run(main_async(args))
            except KeyboardInterrupt:
                return 0
    except SingletonBotError as e:
        logger.error(str(e))
        print(f"\n❌ {e}\n", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
