"""Main pipeline orchestrator for the Accumulation Tracker.

This module provides the Pipeline class that wires together all detection
components and manages the flow from transaction data to delivered alerts.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

from redis.asyncio import Redis

from accumulation_tracker.alerter.channels.mailer import EmailChannel
from accumulation_tracker.alerter.channels.telegram import TelegramChannel
from accumulation_tracker.alerter.dispatcher import AlertDispatcher, SweepSummary
from accumulation_tracker.alerter.factory import AlertFactory
from accumulation_tracker.alerter.formatter import AlertFormatter
from accumulation_tracker.config import Settings, get_settings
from accumulation_tracker.detector.context import ContextBuilder
from accumulation_tracker.detector.models import ScoreResult, SignalType, TimeWindow
from accumulation_tracker.detector.rules import build_default_rules
from accumulation_tracker.detector.scorer import AccumulationScorer
from accumulation_tracker.ingestor.bitquery import BitqueryClient
from accumulation_tracker.ingestor.broad_monitor import BroadMonitor, BroadMonitorSummary
from accumulation_tracker.ingestor.discovery import DiscoverySummary, TokenDiscovery
from accumulation_tracker.scheduler import JobKind, RunGuard, Scheduler
from accumulation_tracker.signals.publisher import SignalPublisher
from accumulation_tracker.signals.store import SignalStore, UpsertOutcome
from accumulation_tracker.storage.database import DatabaseManager
from accumulation_tracker.storage.repos import TokenDTO, TokenRepository

if TYPE_CHECKING:
    from accumulation_tracker.alerter.channels.base import AlertChannel
    from accumulation_tracker.alerter.models import DispatchResult
    from accumulation_tracker.ingestor.models import LargeTransferSource

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    detection_runs: int = 0
    tokens_analyzed: int = 0
    signals_created: int = 0
    signals_updated: int = 0
    alerts_created: int = 0
    alerts_delivered: int = 0
    errors: int = 0
    last_detection_at: datetime | None = None
    last_error: str | None = None


@dataclass
class DetectionSummary:
    """Outcome of one detection pass over all active tokens."""

    tokens_analyzed: int = 0
    windows_evaluated: int = 0
    signals_created: int = 0
    signals_updated: int = 0
    alerts_created: int = 0
    failures: int = 0
    discovery: DiscoverySummary | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        return (
            f"Detection completed: {self.tokens_analyzed} tokens analyzed, "
            f"{self.signals_created} signals created, {self.signals_updated} updated, "
            f"{self.alerts_created} alerts created"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "message": self.message,
            "tokens_analyzed": self.tokens_analyzed,
            "windows_evaluated": self.windows_evaluated,
            "signals_created": self.signals_created,
            "signals_updated": self.signals_updated,
            "alerts_created": self.alerts_created,
            "failures": self.failures,
            "discovery": self.discovery.to_dict() if self.discovery else None,
        }


class Pipeline:
    """Main pipeline orchestrator for the Accumulation Tracker.

    Pipeline flow per token and window:
        Context Builder → Rules → Scorer → Signal Store → Alert Factory → Dispatcher

    Example:
        ```python
        from accumulation_tracker.pipeline import Pipeline

        async with Pipeline() as pipeline:
            summary = await pipeline.run_detection()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        dry_run: bool | None = None,
        db: DatabaseManager | None = None,
        redis: Redis | None = None,
        channels: dict[str, AlertChannel] | None = None,
        transfer_source: LargeTransferSource | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            dry_run: If True, format alerts without sending them. Overrides
                settings.dry_run.
            db: Database manager. Built from settings when omitted.
            redis: Redis client for signal publishing. Built from REDIS_URL when
                omitted and configured.
            channels: Delivery channels by name. Built from settings when omitted.
            transfer_source: Large transfer source for broad monitoring.
        """
        self._settings = settings or get_settings()
        self._dry_run = dry_run if dry_run is not None else self._settings.dry_run

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        self._db_manager = db
        self._owns_db = db is None
        self._redis = redis
        self._owns_redis = redis is None
        self._channels = channels
        self._transfer_source = transfer_source

        self._scorer: AccumulationScorer | None = None
        self._context_builder: ContextBuilder | None = None
        self._signal_store: SignalStore | None = None
        self._alert_factory: AlertFactory | None = None
        self._alert_dispatcher: AlertDispatcher | None = None
        self._discovery: TokenDiscovery | None = None
        self._broad_monitor: BroadMonitor | None = None
        self._scheduler: Scheduler | None = None
        self._run_guard = RunGuard()
        self._stop_event: asyncio.Event | None = None

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if the scheduler is running."""
        return self._state == PipelineState.RUNNING

    @property
    def scheduler(self) -> Scheduler | None:
        return self._scheduler

    @property
    def run_guard(self) -> RunGuard:
        """Guard shared by scheduled jobs and the inline discovery pass."""
        return self._run_guard

    async def initialize(self) -> None:
        """Build components without starting background jobs."""
        if self._scorer is None:
            self._initialize_components()

    async def start(self) -> None:
        """Initialize components and start the recurring jobs.

        Raises:
            RuntimeError: If the pipeline is not stopped.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting pipeline...")

        try:
            await self.initialize()
            self._scheduler = self._build_scheduler()
            await self._scheduler.start()
            self._stats.started_at = datetime.now(UTC)
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started successfully")
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop the recurring jobs and release resources."""
        if self._state == PipelineState.STOPPED:
            await self._cleanup()
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")

        if self._stop_event:
            self._stop_event.set()
        if self._scheduler:
            await self._scheduler.stop()
            self._scheduler = None

        await self._cleanup()
        self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    def _initialize_components(self) -> None:
        settings = self._settings
        detection = settings.detection

        if self._db_manager is None:
            logger.debug("Initializing database manager...")
            self._db_manager = DatabaseManager(settings.database.url)

        if self._redis is None and settings.redis.url:
            logger.debug("Initializing Redis connection...")
            self._redis = Redis.from_url(settings.redis.url)

        self._scorer = AccumulationScorer(
            build_default_rules(exchange_addresses=frozenset(detection.exchange_addresses)),
            signal_threshold=detection.signal_threshold,
            whale_threshold=detection.whale_threshold,
            concentrated_threshold=detection.concentrated_threshold,
        )
        self._context_builder = ContextBuilder(
            top_positions=detection.top_positions,
            dex_events_enabled=detection.dex_events_enabled,
        )
        self._signal_store = SignalStore(
            self._db_manager,
            publisher=SignalPublisher(self._redis, channel=settings.redis.signal_channel),
            tolerance=timedelta(seconds=detection.window_tolerance_seconds),
        )
        self._alert_factory = AlertFactory(
            self._db_manager,
            min_score=detection.alert_min_score,
            dedup_window=timedelta(minutes=settings.alerts.dedup_window_minutes),
            recipient_mode=settings.alerts.recipient_mode,
        )

        if self._channels is None:
            self._channels = self._build_alert_channels()
        self._alert_dispatcher = AlertDispatcher(
            self._db_manager,
            self._channels,
            formatter=AlertFormatter(settings.alerts.frontend_url),
            dry_run=self._dry_run,
            batch_size=settings.alerts.pending_batch_size,
            retry_delay=timedelta(seconds=settings.alerts.pending_retry_delay_seconds),
        )

        self._discovery = TokenDiscovery(
            self._db_manager, lookback=timedelta(days=detection.discovery_lookback_days)
        )

        if self._transfer_source is None and settings.bitquery.enabled:
            api_key = settings.bitquery.api_key
            self._transfer_source = BitqueryClient(
                api_key.get_secret_value() if api_key else None,
                url=settings.bitquery.url,
                lookback=timedelta(minutes=settings.bitquery.lookback_minutes),
            )
        self._broad_monitor = BroadMonitor(
            self._db_manager,
            self._transfer_source,
            self._alert_factory,
            networks=settings.scheduler.broad_monitor_networks,
            min_usd=settings.scheduler.broad_monitor_min_usd,
            limit=settings.scheduler.broad_monitor_limit,
        )

    def _build_alert_channels(self) -> dict[str, AlertChannel]:
        """Build the delivery channels from settings."""
        settings = self._settings
        channels: dict[str, AlertChannel] = {}

        bot_token = settings.telegram.bot_token
        channels["telegram"] = TelegramChannel(bot_token.get_secret_value() if bot_token else None)

        email = settings.email
        channels["email"] = EmailChannel(
            sendgrid_api_key=(
                email.sendgrid_api_key.get_secret_value() if email.sendgrid_api_key else None
            ),
            mailgun_api_key=(
                email.mailgun_api_key.get_secret_value() if email.mailgun_api_key else None
            ),
            mailgun_domain=email.mailgun_domain,
            from_address=email.from_address,
            from_name=email.from_name,
        )

        configured = [name for name, channel in channels.items() if channel.is_configured()]
        if configured:
            logger.info("Alert channels enabled: %s", ", ".join(configured))
        else:
            logger.warning("No alert channels configured")
        return channels

    def _build_scheduler(self) -> Scheduler:
        cadence = self._settings.scheduler
        scheduler = Scheduler(guard=self._run_guard)
        scheduler.add_job(JobKind.DETECT, self.run_detection, cadence.detect_interval_seconds)
        scheduler.add_job(
            JobKind.DISCOVER,
            self.run_discovery,
            cadence.discover_interval_seconds,
            run_immediately=False,
        )
        scheduler.add_job(
            JobKind.ALERT_SWEEP,
            self.process_pending_alerts,
            cadence.alert_sweep_interval_seconds,
            run_immediately=False,
        )
        if self._transfer_source is not None:
            scheduler.add_job(
                JobKind.BROAD_MONITOR,
                self.run_broad_monitoring,
                cadence.broad_monitor_interval_seconds,
            )
        return scheduler

    async def _cleanup(self) -> None:
        """Clean up resources."""
        if self._channels:
            for channel in self._channels.values():
                await channel.close()

        close_source = getattr(self._transfer_source, "close", None)
        if close_source is not None:
            await close_source()

        if self._db_manager and self._owns_db:
            await self._db_manager.dispose_async()
            self._db_manager = None

        if self._redis and self._owns_redis:
            await self._redis.aclose()
            self._redis = None

        self._scorer = None
        logger.debug("Resources cleaned up")

    async def run_detection(self) -> DetectionSummary:
        """Score every active token over every configured window.

        A discovery pass runs first so newly seen tokens are active before
        scoring; it is skipped while a scheduled discovery holds the DISCOVER
        guard, and its failure does not abort detection. Failures are isolated
        per token and per window.
        """
        await self.initialize()
        if self._db_manager is None:
            raise RuntimeError("Database manager is not initialized")

        summary = DetectionSummary()
        logger.info("Starting accumulation detection...")

        async with self._run_guard.hold(JobKind.DISCOVER) as acquired:
            if not acquired:
                logger.info("Skipping discovery before detection: discovery already running")
            else:
                try:
                    summary.discovery = await self.run_discovery()
                except Exception as e:
                    summary.errors.append(f"discovery: {e}")
                    logger.warning("Token discovery before detection failed: %s", e)

        async with self._db_manager.get_async_session() as session:
            tokens = await TokenRepository(session).list_active()

        if not tokens:
            logger.warning("No active tokens to analyze")
        else:
            logger.info("Analyzing %d tokens", len(tokens))

        for token in tokens:
            try:
                await self._analyze_token(token, summary)
            except Exception as e:
                summary.failures += 1
                summary.errors.append(f"{token.id}: {e}")
                self._stats.errors += 1
                self._stats.last_error = str(e)
                logger.error("Failed to analyze token %s: %s", token.id, e, exc_info=True)
                continue
            summary.tokens_analyzed += 1

        self._stats.detection_runs += 1
        self._stats.tokens_analyzed += summary.tokens_analyzed
        self._stats.last_detection_at = datetime.now(UTC)
        logger.info(summary.message)
        return summary

    async def _analyze_token(self, token: TokenDTO, summary: DetectionSummary) -> None:
        if self._db_manager is None or self._scorer is None or self._context_builder is None:
            raise RuntimeError("Detection components are not initialized")

        end = datetime.now(UTC)
        for hours in self._settings.detection.window_hours:
            window = TimeWindow.trailing(end, hours)
            try:
                async with self._db_manager.get_async_session() as session:
                    ctx = await self._context_builder.build(session, token.id, window, token=token)
                result = self._scorer.evaluate(ctx)
                summary.windows_evaluated += 1

                signal_type = self._scorer.classify(result.score)
                if signal_type is None:
                    logger.debug(
                        "Token %s (%s) scored %.2f, below signal threshold",
                        token.symbol,
                        window.label,
                        result.score,
                    )
                    continue

                await self._persist_signal(
                    token, window, ctx.wallets_involved, result, signal_type, summary
                )
            except Exception as e:
                summary.failures += 1
                summary.errors.append(f"{token.id}/{window.label}: {e}")
                logger.warning(
                    "Failed to analyze token %s for window %s: %s", token.id, window.label, e
                )

    async def _persist_signal(
        self,
        token: TokenDTO,
        window: TimeWindow,
        wallets: set[str],
        result: ScoreResult,
        signal_type: SignalType,
        summary: DetectionSummary,
    ) -> None:
        if self._signal_store is None or self._alert_factory is None:
            raise RuntimeError("Signal store and alert factory must be initialized first")

        upsert = await self._signal_store.upsert(
            token.id,
            result.score,
            signal_type,
            window,
            wallets,
            metadata={"breakdown": result.breakdown, "failedRules": list(result.failed_rules)},
        )
        if upsert is None:
            return

        if upsert.outcome is UpsertOutcome.UPDATED:
            summary.signals_updated += 1
            self._stats.signals_updated += 1
            return
        if upsert.outcome is not UpsertOutcome.CREATED:
            return

        summary.signals_created += 1
        self._stats.signals_created += 1

        signal_id = upsert.signal.id
        if signal_id is None or result.score < self._alert_factory.min_score:
            return

        created = await self._alert_factory.create_alerts_for_signal(signal_id)
        summary.alerts_created += created
        self._stats.alerts_created += created
        if created:
            await self.dispatch_alerts_for_signal(signal_id)

    async def run_discovery(self) -> DiscoverySummary:
        """Register or re-activate tokens seen in recent transactions."""
        await self.initialize()
        if self._discovery is None:
            raise RuntimeError("Token discovery is not initialized")
        return await self._discovery.run()

    async def dispatch_alerts_for_signal(self, signal_id: str) -> list[DispatchResult]:
        await self.initialize()
        if self._alert_dispatcher is None:
            raise RuntimeError("Alert dispatcher is not initialized")
        results = await self._alert_dispatcher.dispatch_alerts_for_signal(signal_id)
        self._stats.alerts_delivered += sum(1 for r in results if r.delivered)
        return results

    async def process_pending_alerts(self) -> SweepSummary:
        """Retry delivery of PENDING alerts older than the retry delay."""
        await self.initialize()
        if self._alert_dispatcher is None:
            raise RuntimeError("Alert dispatcher is not initialized")
        summary = await self._alert_dispatcher.process_pending_alerts()
        self._stats.alerts_delivered += summary.delivered
        return summary

    async def run_broad_monitoring(self) -> BroadMonitorSummary:
        """Turn recent large transfers on all networks into event alerts."""
        await self.initialize()
        if self._broad_monitor is None:
            raise RuntimeError("Broad monitor is not initialized")
        summary = await self._broad_monitor.run()
        self._stats.alerts_created += summary.alerts_created
        return summary

    async def run(self) -> None:
        """Start the pipeline and run until cancelled.

        Example:
            ```python
            pipeline = Pipeline()
            try:
                await pipeline.run()
            except KeyboardInterrupt:
                pass
            ```
        """
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> Pipeline:
        """Async context manager entry; components only, no background jobs."""
        await self.initialize()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
