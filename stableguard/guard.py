"""
StableGuard Orchestrator
Runs the five-stage risk pipeline, persists its results and answers
transaction evaluations from the wallet
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from config import (
    MAX_EVENTS,
    RISK_BAND_HIGH,
    RISK_BAND_LOW,
    RISK_BAND_MEDIUM,
    RISK_BAND_VERY_HIGH,
)
from stableguard.collection import DataCollector
from stableguard.config_manager import (
    AppConfig,
    Environment,
    GuardSettings,
    load_settings,
)
from stableguard.execution import ExecutionStage, evaluate_transaction, parse_transaction
from stableguard.features import FeatureCalculator, FeatureParams
from stableguard.models import (
    DataQuality,
    EventType,
    ExecutionRecord,
    GuardEvent,
    RawObservation,
    RiskBands,
    RiskLevel,
    RiskReport,
    SchemaError,
    StrategyBundle,
    TransactionEvaluation,
    TriggerType,
)
from stableguard.monitoring import (
    StageTimer,
    assessments_total,
    record_data_quality,
    transaction_decisions,
)
from stableguard.prices import (
    CoinGeckoPriceSource,
    OfflinePriceSource,
    PriceSource,
    PriceSourceError,
)
from stableguard.resilience import CircuitBreaker, QuoteCache
from stableguard.risk import RiskAnalyzer
from stableguard.sentry_config import add_breadcrumb, capture_exception
from stableguard.storage import (
    CONFIG_KEY,
    EVENTS_KEY,
    LAST_UPDATE_KEY,
    METRICS_KEY,
    KeyValueStore,
    risk_key,
    strategy_key,
)
from stableguard.strategy import StrategyGenerator, build_bundle

logger = logging.getLogger(__name__)

SettingsListener = Callable[[GuardSettings], None]

ERROR_DISABLED = "StableGuard is disabled"
ERROR_IN_PROGRESS = "Assessment already in progress"


@dataclass
class AssessmentResult:
    """Outcome of one full assessment run"""

    success: bool
    timestamp: float
    assets: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "success": self.success,
            "timestamp": self.timestamp,
            "assets": self.assets,
        }
        if self.error:
            data["error"] = self.error
        return data


def feature_params(settings: GuardSettings) -> FeatureParams:
    """Feature parameters driven by the user's thresholds"""
    return FeatureParams(
        price_deviation_threshold=settings.thresholds.price_deviation_warning,
        volatility_threshold=settings.thresholds.volatility_warning * 100,
    )


def build_price_source(settings: GuardSettings, app_config: AppConfig) -> PriceSource:
    """CoinGecko client, or the offline source when no price API is set"""
    if settings.offline:
        logger.info("No price API configured, running in offline mode")
        return OfflinePriceSource()

    api = app_config.price_api
    breaker = CircuitBreaker(
        "coingecko",
        failure_threshold=api.breaker_failure_threshold,
        recovery_timeout=api.breaker_recovery_seconds,
        expected_exception=(PriceSourceError,),
    )
    return CoinGeckoPriceSource(
        base_url=settings.data_sources.price_api,
        timeout=api.timeout_seconds,
        breaker=breaker,
    )


class StableGuard:
    """Main controller; one instance per process, stages injected"""

    def __init__(
        self,
        store: KeyValueStore,
        settings: GuardSettings,
        collector: DataCollector,
        features: FeatureCalculator,
        analyzer: RiskAnalyzer,
        strategies: StrategyGenerator,
        executor: ExecutionStage,
        app_config: Optional[AppConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.settings = settings
        self.collector = collector
        self.features = features
        self.analyzer = analyzer
        self.strategies = strategies
        self.executor = executor
        self.app_config = app_config or AppConfig(environment=Environment.DEVELOPMENT)
        self._clock = clock
        self._running = False
        self._listeners: List[SettingsListener] = []

    @classmethod
    async def create(
        cls,
        store: KeyValueStore,
        app_config: Optional[AppConfig] = None,
        price_source: Optional[PriceSource] = None,
        clock: Callable[[], float] = time.time,
    ) -> "StableGuard":
        """Build a guard from persisted settings and process configuration"""
        app_config = app_config or AppConfig(environment=Environment.DEVELOPMENT)

        try:
            persisted = await store.get(CONFIG_KEY)
        except Exception as e:
            logger.error(f"Failed to load settings, using defaults: {e}")
            persisted = None
        settings = load_settings(persisted)

        collector = DataCollector(
            price_source or build_price_source(settings, app_config),
            cache=QuoteCache(ttl=app_config.price_api.cache_ttl_seconds, clock=clock),
            clock=clock,
        )
        analyzer = RiskAnalyzer(
            bands=RiskBands(
                low=RISK_BAND_LOW,
                medium=RISK_BAND_MEDIUM,
                high=RISK_BAND_HIGH,
                very_high=RISK_BAND_VERY_HIGH,
            ),
            price_deviation_critical=settings.thresholds.price_deviation_critical,
        )

        guard = cls(
            store=store,
            settings=settings,
            collector=collector,
            features=FeatureCalculator(feature_params(settings)),
            analyzer=analyzer,
            strategies=StrategyGenerator(),
            executor=ExecutionStage(store, clock=clock),
            app_config=app_config,
            clock=clock,
        )
        logger.info(
            f"StableGuard initialized - enabled: {settings.enabled}, "
            f"mode: {settings.strict_mode.value}, assets: {settings.monitored_assets}"
        )
        return guard

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Assessment
    # ------------------------------------------------------------------

    async def perform_risk_assessment(self) -> AssessmentResult:
        """Run collection, features, risk, strategy and persistence; never raises"""
        result, _ = await self._assess()
        return result

    async def _assess(self) -> Tuple[AssessmentResult, List[StrategyBundle]]:
        if not self.settings.enabled:
            assessments_total.labels(status="disabled").inc()
            return (
                AssessmentResult(False, self._clock(), error=ERROR_DISABLED),
                [],
            )

        if self._running:
            logger.warning("Assessment already running")
            assessments_total.labels(status="rejected").inc()
            return (
                AssessmentResult(
                    False, self._clock(), error=ERROR_IN_PROGRESS
                ),
                [],
            )

        self._running = True
        started = time.perf_counter()
        metrics: Dict[str, Any] = {}

        try:
            logger.info("Starting risk assessment...")
            add_breadcrumb(
                "Risk assessment started",
                data={"assets": self.settings.monitored_assets},
            )

            with StageTimer("collection", metrics) as timer:
                collected = await self.collector.collect(self.settings.monitored_assets)
                timer.data_points = len(collected.observations)
            metrics["collection"]["quality"] = collected.data_quality.value
            record_data_quality(collected.data_quality)
            if collected.data_quality == DataQuality.LOW:
                logger.warning("Low data quality detected")

            with StageTimer("features", metrics) as timer:
                feature_output = await self.features.calculate(collected.observations)
                timer.data_points = len(feature_output.snapshots) * 6

            with StageTimer("risk", metrics) as timer:
                risk_output = await self.analyzer.analyze(feature_output.snapshots)
                timer.data_points = len(risk_output.reports)

            with StageTimer("strategy", metrics) as timer:
                bundles = await self.strategies.generate(
                    risk_output.reports, self.settings.strict_mode
                )
                timer.data_points = len(bundles)

            with StageTimer("persistence", metrics) as timer:
                await self._store_results(
                    risk_output.reports, bundles, collected.observations
                )
                timer.data_points = len(risk_output.reports)

            await self._safe_set(
                METRICS_KEY, {"stages": metrics, "timestamp": self._clock()}
            )

            for report in risk_output.reports:
                if report.risk_level.at_least(RiskLevel.HIGH):
                    await self._record_event(
                        asset_id=report.asset_id,
                        event_type=EventType.RISK_DETECTED,
                        severity=report.risk_level,
                        title=f"{report.asset_id.upper()} risk elevated",
                        description=report.summary,
                        related_data={"risk_score": report.risk_score},
                    )

            elapsed = time.perf_counter() - started
            logger.info(f"Assessment completed in {elapsed * 1000:.0f}ms")
            assessments_total.labels(status="success").inc()

            return (
                AssessmentResult(
                    success=True,
                    timestamp=self._clock(),
                    assets=[r.summary_dict() for r in risk_output.reports],
                ),
                bundles,
            )

        except Exception as e:
            logger.error(f"Assessment failed: {e}")
            capture_exception(e, {"function": "perform_risk_assessment"})
            assessments_total.labels(status="error").inc()
            return AssessmentResult(False, self._clock(), error=str(e)), []

        finally:
            self._running = False

    async def run_scheduled_cycle(self) -> AssessmentResult:
        """Timer job: full assessment, then execute every fresh bundle"""
        result, bundles = await self._assess()
        if not result.success:
            logger.info(f"Scheduled assessment skipped: {result.error}")
            return result

        for bundle in bundles:
            await self.executor.execute_strategies(
                bundle,
                TriggerType.SCHEDULED,
                trigger_data={"assessed_at": result.timestamp},
            )
        return result

    async def trigger_manual(self, asset_id: str) -> Optional[ExecutionRecord]:
        """Execute the cached bundle for one asset, assessing first on a miss"""
        asset_id = asset_id.lower()
        _, bundle = await self._cached(asset_id)
        if bundle is None:
            await self.perform_risk_assessment()
            _, bundle = await self._cached(asset_id)
        if bundle is None:
            logger.warning(f"No strategy bundle available for {asset_id}")
            return None

        return await self.executor.execute_strategies(
            bundle, TriggerType.MANUAL, trigger_data={"asset_id": asset_id}
        )

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def evaluate_transaction(
        self, tx_params: Dict[str, Any]
    ) -> Optional[TransactionEvaluation]:
        """
        Decision for a pending wallet transaction

        Returns None when disabled, when the destination is not a monitored
        asset, or on any internal failure; the wallet stays usable.
        """
        if not self.settings.enabled:
            logger.info("Disabled, skipping transaction evaluation")
            return None

        try:
            context = parse_transaction(tx_params)
            asset_id = context.asset_id
            if not context.is_monitored or asset_id not in self.settings.monitored_assets:
                logger.debug("Not a monitored stablecoin transaction, skipping")
                return None

            report, bundle = await self._cached(asset_id)
            if report is None or bundle is None:
                logger.info(
                    f"No cached risk data for {asset_id}, performing fresh assessment"
                )
                await self.perform_risk_assessment()
                report, bundle = await self._cached(asset_id)
                if bundle is None:
                    logger.warning(f"Failed to get strategy bundle for {asset_id}")
                    return None

            evaluation = evaluate_transaction(tx_params, bundle, report, self._clock)
            transaction_decisions.labels(decision=evaluation.decision.value).inc()

            await self.executor.execute_strategies(
                bundle,
                TriggerType.TRANSACTION,
                trigger_data={
                    "to": context.recipient,
                    "chain_id": context.chain_id,
                    "operation": context.operation,
                    "decision": evaluation.decision.value,
                },
            )
            await self._record_event(
                asset_id=asset_id,
                event_type=EventType.TRANSACTION_EVALUATED,
                severity=bundle.risk_level,
                title="Transaction risk evaluated",
                description=evaluation.message,
                related_data={
                    "decision": evaluation.decision.value,
                    "operation": context.operation,
                },
            )
            return evaluation

        except Exception as e:
            logger.error(f"Transaction evaluation failed: {e}")
            capture_exception(e, {"function": "evaluate_transaction"})
            return None

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    async def enable(self) -> GuardSettings:
        settings = await self.update_settings(enabled=True)
        logger.info("StableGuard enabled")
        return settings

    async def disable(self) -> GuardSettings:
        settings = await self.update_settings(enabled=False)
        logger.info("StableGuard disabled")
        return settings

    async def update_settings(self, **changes) -> GuardSettings:
        """Apply and persist settings changes; raises ValueError when invalid"""
        previous = self.settings
        settings = previous.updated(**changes)
        self.settings = settings

        if settings.thresholds != previous.thresholds:
            params = feature_params(settings)
            self.features.params.price_deviation_threshold = (
                params.price_deviation_threshold
            )
            self.features.params.volatility_threshold = params.volatility_threshold
            self.analyzer.price_deviation_critical = (
                settings.thresholds.price_deviation_critical
            )

        if settings.data_sources.price_api != previous.data_sources.price_api:
            self.collector.price_source = build_price_source(settings, self.app_config)
            self.collector.clear_cache()

        await self._safe_set(CONFIG_KEY, settings.to_dict())

        if settings.strict_mode != previous.strict_mode:
            for asset_id in settings.monitored_assets:
                await self._cached(asset_id)

        logger.info("Settings updated")

        for listener in self._listeners:
            try:
                listener(settings)
            except Exception as e:
                logger.error(f"Settings listener failed: {e}")

        return settings

    def get_settings(self) -> GuardSettings:
        return self.settings

    def add_settings_listener(self, listener: SettingsListener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_latest_report(self, asset_id: str) -> Optional[RiskReport]:
        report, _ = await self._cached(asset_id.lower())
        return report

    async def get_event_history(self, limit: int = 20) -> List[Dict[str, Any]]:
        """Most recent events first"""
        if limit <= 0:
            return []
        try:
            events = await self.store.get(EVENTS_KEY) or []
        except Exception as e:
            logger.error(f"Failed to get event history: {e}")
            return []
        return list(reversed(events[-limit:]))

    async def get_execution_history(self, limit: int = 20) -> List[ExecutionRecord]:
        return await self.executor.get_execution_history(limit)

    async def status(self) -> Dict[str, Any]:
        try:
            last_update = await self.store.get(LAST_UPDATE_KEY)
            metrics = await self.store.get(METRICS_KEY)
        except Exception as e:
            logger.error(f"Failed to read status: {e}")
            last_update, metrics = None, None

        return {
            "enabled": self.settings.enabled,
            "strict_mode": self.settings.strict_mode.value,
            "monitored_assets": list(self.settings.monitored_assets),
            "assessment_running": self._running,
            "last_update": last_update,
            "metrics": metrics,
            "price_source": self.collector.price_source.status(),
        }

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    async def _cached(
        self, asset_id: str
    ) -> Tuple[Optional[RiskReport], Optional[StrategyBundle]]:
        """Cached report and bundle; unreadable payloads count as a miss"""
        try:
            raw_report = await self.store.get(risk_key(asset_id))
            raw_bundle = await self.store.get(strategy_key(asset_id))
        except Exception as e:
            logger.error(f"Failed to read cached risk data for {asset_id}: {e}")
            return None, None

        report: Optional[RiskReport] = None
        bundle: Optional[StrategyBundle] = None
        try:
            if raw_report is not None:
                report = RiskReport.from_dict(raw_report)
            if raw_bundle is not None:
                bundle = StrategyBundle.from_dict(raw_bundle)
        except SchemaError as e:
            logger.warning(f"Discarding cached risk data for {asset_id}: {e}")
            return None, None

        mode = self.settings.strict_mode
        if report is not None and bundle is not None and bundle.strict_mode != mode:
            # Control strategies depend on the mode; rebuild from the cached report
            bundle = build_bundle(report, mode, self.strategies.suggested_limit_usd)
            await self._safe_set(strategy_key(asset_id), bundle.to_dict())
            logger.info(f"Rebuilt {asset_id} strategy bundle for {mode.value} mode")

        return report, bundle

    async def _store_results(
        self,
        reports: List[RiskReport],
        bundles: List[StrategyBundle],
        observations: List[RawObservation],
    ) -> None:
        prices = {o.asset_id: o for o in observations}
        bundle_map = {b.asset_id: b for b in bundles}
        data: Dict[str, Any] = {}
        orphaned: List[str] = []

        for report in reports:
            observation = prices.get(report.asset_id)
            if observation:
                # Price chart data
                report.current_price = observation.price
                report.price_change_24h = observation.price_change_24h

            data[risk_key(report.asset_id)] = report.to_dict()
            bundle = bundle_map.get(report.asset_id)
            if bundle:
                data[strategy_key(report.asset_id)] = bundle.to_dict()
            else:
                # A bundle from an older report must not pair with this one
                orphaned.append(strategy_key(report.asset_id))

        data[LAST_UPDATE_KEY] = self._clock()

        try:
            await self.store.set_many(data)
            if orphaned:
                await self.store.remove(*orphaned)
            logger.info("Assessment results stored")
        except Exception as e:
            logger.error(f"Failed to store results: {e}")

    async def _record_event(
        self,
        asset_id: str,
        event_type: EventType,
        severity: RiskLevel,
        title: str,
        description: str,
        related_data: Optional[Dict[str, Any]] = None,
    ) -> None:
        now = self._clock()
        event = GuardEvent(
            id=f"event-{int(now * 1000)}-{uuid.uuid4().hex[:8]}",
            timestamp=now,
            asset_id=asset_id,
            event_type=event_type,
            severity=severity,
            title=title,
            description=description,
            related_data=related_data,
        )

        try:
            events = list(await self.store.get(EVENTS_KEY) or [])
            events.append(event.to_dict())
            if len(events) > MAX_EVENTS:
                events = events[-MAX_EVENTS:]
            await self.store.set(EVENTS_KEY, events)
        except Exception as e:
            logger.error(f"Failed to record event: {e}")

    async def _safe_set(self, key: str, value: Any) -> None:
        try:
            await self.store.set(key, value)
        except Exception as e:
            logger.error(f"Failed to persist {key}: {e}")
