"""
Feature Computation Stage
Maintains a bounded price/volume window per asset and turns each observation
into six risk features with dynamic thresholds, an overall anomaly score and
a trend label
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional, Sequence

import numpy as np

from config import (
    CONCENTRATION_THRESHOLD,
    FEATURE_WEIGHTS,
    LIQUIDITY_REFERENCE_PERCENT,
    REDEEM_PRESSURE_THRESHOLD,
    THRESHOLD_MIN_SAMPLES,
    THRESHOLD_MULTIPLIER,
    TREND_THRESHOLD,
    TREND_WINDOW,
    WHALE_ACTIVITY_THRESHOLD,
    WINDOW_SIZE,
)
from stableguard.assets import get_asset
from stableguard.models import (
    FeatureOutput,
    FeatureSnapshot,
    RawObservation,
    RiskFeature,
    Trend,
)

logger = logging.getLogger(__name__)


@dataclass
class FeatureParams:
    """Tunable parameters of the feature stage"""

    window_size: int = WINDOW_SIZE
    threshold_multiplier: float = THRESHOLD_MULTIPLIER
    min_samples: int = THRESHOLD_MIN_SAMPLES
    trend_window: int = TREND_WINDOW
    trend_threshold: float = TREND_THRESHOLD

    # Static thresholds, in percent unless noted
    price_deviation_threshold: float = 0.5
    volatility_threshold: float = 2.0
    liquidity_reference: float = LIQUIDITY_REFERENCE_PERCENT
    redeem_threshold: float = REDEEM_PRESSURE_THRESHOLD
    whale_threshold: float = WHALE_ACTIVITY_THRESHOLD  # score points
    concentration_threshold: float = CONCENTRATION_THRESHOLD

    weights: Dict[str, float] = field(default_factory=lambda: dict(FEATURE_WEIGHTS))


class HistoricalWindow:
    """Fixed-capacity sequence of past observations; oldest evicted first"""

    def __init__(self, capacity: int):
        self.capacity = capacity
        self.timestamps: Deque[float] = deque(maxlen=capacity)
        self.prices: Deque[float] = deque(maxlen=capacity)
        self.volumes: Deque[float] = deque(maxlen=capacity)
        self.price_changes: Deque[float] = deque(maxlen=capacity)

    def append(self, observation: RawObservation) -> None:
        self.timestamps.append(observation.timestamp)
        self.prices.append(observation.price)
        self.volumes.append(observation.volume_24h)
        self.price_changes.append(observation.price_change_24h)

    def __len__(self) -> int:
        return len(self.prices)


class FeatureCalculator:
    """Owns the per-asset historical windows; the only writer to them"""

    def __init__(self, params: Optional[FeatureParams] = None):
        self.params = params or FeatureParams()
        self._history: Dict[str, HistoricalWindow] = {}

    async def calculate(self, observations: List[RawObservation]) -> FeatureOutput:
        started = time.perf_counter()
        snapshots: List[FeatureSnapshot] = []

        logger.info(f"Calculating features for {len(observations)} stablecoins")

        for observation in observations:
            try:
                window = self._update_history(observation)
                snapshots.append(self._snapshot(observation, window))
            except Exception as e:
                logger.error(
                    f"Failed to calculate features for {observation.asset_id}: {e}"
                )

        elapsed = time.perf_counter() - started
        logger.info(f"Feature calculation completed in {elapsed * 1000:.0f}ms")

        return FeatureOutput(
            snapshots=snapshots,
            calculation_time=elapsed,
            window_size=self.params.window_size,
        )

    def history(self, asset_id: str) -> Optional[HistoricalWindow]:
        return self._history.get(asset_id)

    def clear_history(self) -> None:
        self._history.clear()
        logger.info("Feature history cleared")

    def _update_history(self, observation: RawObservation) -> HistoricalWindow:
        window = self._history.get(observation.asset_id)
        if window is None:
            window = HistoricalWindow(self.params.window_size)
            self._history[observation.asset_id] = window
        window.append(observation)
        return window

    def _snapshot(
        self, observation: RawObservation, window: HistoricalWindow
    ) -> FeatureSnapshot:
        asset = get_asset(observation.asset_id)
        peg = asset.peg_target if asset else 1.0

        snapshot = FeatureSnapshot(
            asset_id=observation.asset_id,
            timestamp=observation.timestamp,
            price_deviation=self.price_deviation(observation, window, peg),
            volatility=self.volatility(window),
            liquidity_ratio=self.liquidity_ratio(observation),
            redeem_pressure=self.redeem_pressure(observation, window),
            whale_activity=self.whale_activity(observation),
            concentration_risk=self.concentration_risk(),
            overall_anomaly_score=0.0,
            trend=self.trend(window, peg),
        )
        snapshot.overall_anomaly_score = self.overall_score(snapshot.features)
        return snapshot

    # ------------------------------------------------------------------
    # Individual features
    # ------------------------------------------------------------------

    def price_deviation(
        self, observation: RawObservation, window: HistoricalWindow, peg: float
    ) -> RiskFeature:
        value = abs(observation.price - peg) / peg * 100
        threshold = self.params.price_deviation_threshold

        if len(window) >= self.params.min_samples:
            dynamic = self.dynamic_threshold(window.prices, peg)
        else:
            dynamic = threshold

        return RiskFeature(
            name="price_deviation",
            value=value,
            threshold=threshold,
            dynamic_threshold=dynamic,
            is_anomalous=value > dynamic,
            severity=_severity(value, dynamic),
            description=f"Price deviates {value:.3f}% from peg",
        )

    def volatility(self, window: HistoricalWindow) -> RiskFeature:
        threshold = self.params.volatility_threshold

        value = 0.0
        if len(window) >= 2:
            prices = np.asarray(window.prices, dtype=float)
            returns = np.diff(prices) / prices[:-1]
            value = _std(returns) * 100

        if len(window) >= self.params.min_samples:
            dynamic = max(threshold, value * 0.8)
        else:
            dynamic = threshold

        return RiskFeature(
            name="volatility",
            value=value,
            threshold=threshold,
            dynamic_threshold=dynamic,
            is_anomalous=value > dynamic,
            severity=_severity(value, dynamic),
            description=f"Price volatility {value:.3f}%",
        )

    def liquidity_ratio(self, observation: RawObservation) -> RiskFeature:
        reference = self.params.liquidity_reference
        low, high = reference * 0.5, reference * 3

        if observation.market_cap <= 0:
            return RiskFeature(
                name="liquidity_ratio",
                value=0.0,
                threshold=reference,
                dynamic_threshold=reference,
                is_anomalous=False,
                severity=0.0,
                description="Liquidity ratio unavailable (no market cap data)",
            )

        ratio = observation.volume_24h / observation.market_cap * 100

        # TODO: revisit the high-liquidity branch once there is a documented
        # rationale for treating heavy turnover as risk
        if ratio < low:
            anomalous, severity = True, min((low - ratio) / low, 1.0)
        elif ratio > high:
            anomalous, severity = True, min((ratio - high) / high, 1.0)
        else:
            anomalous, severity = False, 0.0

        return RiskFeature(
            name="liquidity_ratio",
            value=ratio,
            threshold=reference,
            dynamic_threshold=reference,
            is_anomalous=anomalous,
            severity=severity,
            description=f"Liquidity ratio {ratio:.2f}%",
        )

    def redeem_pressure(
        self, observation: RawObservation, window: HistoricalWindow
    ) -> RiskFeature:
        threshold = self.params.redeem_threshold

        volume_change = 0.0
        if len(window.volumes) >= 2:
            previous = window.volumes[-2]
            if previous > 0:
                volume_change = (observation.volume_24h - previous) / previous * 100

        # Falling price together with a volume surge
        price_change = observation.price_change_24h
        if price_change < 0 and volume_change > 50:
            pressure = abs(price_change) * (volume_change / 100)
        else:
            pressure = 0.0

        return RiskFeature(
            name="redeem_pressure",
            value=pressure,
            threshold=threshold,
            dynamic_threshold=threshold,
            is_anomalous=pressure > threshold,
            severity=_severity(pressure, threshold),
            description=f"Redemption pressure index {pressure:.2f}",
        )

    def whale_activity(self, observation: RawObservation) -> RiskFeature:
        threshold = self.params.whale_threshold
        score = 10.0 * len(observation.large_transfers)

        return RiskFeature(
            name="whale_activity",
            value=score,
            threshold=threshold,
            dynamic_threshold=threshold,
            is_anomalous=score > threshold,
            severity=_severity(score, threshold),
            description=f"Whale activity score {score:.0f}",
        )

    def concentration_risk(self) -> RiskFeature:
        # Holder distribution data is not collected yet
        threshold = self.params.concentration_threshold
        return RiskFeature(
            name="concentration_risk",
            value=0.0,
            threshold=threshold,
            dynamic_threshold=threshold,
            is_anomalous=False,
            severity=0.0,
            description="Concentration risk (no holder data)",
        )

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def overall_score(self, features: List[RiskFeature]) -> float:
        """Weighted severity of anomalous features, normalized by all weights"""
        total_score = 0.0
        total_weight = 0.0

        for feature in features:
            weight = self.params.weights.get(feature.name, 1.0)
            if feature.is_anomalous:
                total_score += feature.severity * weight * 100
            total_weight += weight

        if total_weight <= 0:
            return 0.0
        return min(max(total_score / total_weight, 0.0), 100.0)

    def trend(self, window: HistoricalWindow, peg: float) -> Trend:
        n = self.params.trend_window
        if len(window) < n:
            return Trend.STABLE

        prices = list(window.prices)
        deviation = abs(float(np.mean(prices[-n:])) - peg)
        if len(prices) > n:
            previous = abs(prices[-n - 1] - peg)
        else:
            previous = deviation

        band = self.params.trend_threshold
        if deviation < previous * (1 - band):
            return Trend.IMPROVING
        elif deviation > previous * (1 + band):
            return Trend.DETERIORATING
        else:
            return Trend.STABLE

    def dynamic_threshold(self, prices: Sequence[float], peg: float) -> float:
        """(mean + k * stddev) of historical relative deviations, in percent"""
        deviations = np.abs(np.asarray(prices, dtype=float) - peg) / peg
        mean = float(np.mean(deviations)) if len(deviations) else 0.0
        return (mean + _std(deviations) * self.params.threshold_multiplier) * 100


def _std(values) -> float:
    """Population standard deviation; 0 for fewer than two values"""
    if len(values) < 2:
        return 0.0
    return float(np.std(values))


def _severity(value: float, threshold: float) -> float:
    if threshold <= 0:
        return 1.0 if value > 0 else 0.0
    return min(max(value / (threshold * 2), 0.0), 1.0)
