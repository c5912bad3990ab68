"""
Risk Analysis Stage
Turns feature snapshots into graded risk reports: factor selection, weighted
score, trend adjustment, band lookup and confidence
"""

import logging
import time
from typing import List, Optional

from stableguard.models import (
    FeatureSnapshot,
    RiskBands,
    RiskCategory,
    RiskFactor,
    RiskFeature,
    RiskLevel,
    RiskOutput,
    RiskReport,
    Trend,
)

logger = logging.getLogger(__name__)

DATA_SOURCES = ["CoinGecko API", "feature pipeline"]
ANALYSIS_METHOD = "multi-factor weighted scoring"

TREND_MULTIPLIERS = {
    Trend.DETERIORATING: 1.2,
    Trend.IMPROVING: 0.8,
    Trend.STABLE: 1.0,
}

LEVEL_LABELS = {
    RiskLevel.VERY_LOW: "very low",
    RiskLevel.LOW: "low",
    RiskLevel.MEDIUM: "medium",
    RiskLevel.HIGH: "high",
    RiskLevel.VERY_HIGH: "very high",
}

CATEGORY_LABELS = {
    RiskCategory.PRICE_DEVIATION: "price deviation",
    RiskCategory.LIQUIDITY_CRISIS: "liquidity stress",
    RiskCategory.WHALE_ACTIVITY: "whale activity",
    RiskCategory.REDEEM_PRESSURE: "redemption pressure",
    RiskCategory.RESERVE_CONCERN: "reserve concern",
    RiskCategory.REGULATORY_RISK: "regulatory risk",
    RiskCategory.SENTIMENT_NEGATIVE: "negative sentiment",
    RiskCategory.TECHNICAL_ISSUE: "technical issue",
}


class RiskAnalyzer:
    """Stateless; reports are a pure function of the snapshot"""

    def __init__(
        self,
        bands: Optional[RiskBands] = None,
        price_deviation_critical: float = 2.0,
    ):
        self.bands = bands or RiskBands()
        self.price_deviation_critical = price_deviation_critical

    async def analyze(self, snapshots: List[FeatureSnapshot]) -> RiskOutput:
        started = time.perf_counter()
        reports: List[RiskReport] = []

        for snapshot in snapshots:
            try:
                reports.append(self.analyze_snapshot(snapshot))
            except Exception as e:
                logger.error(f"Risk analysis failed for {snapshot.asset_id}: {e}")

        elapsed = time.perf_counter() - started
        logger.info(
            f"Risk analysis completed for {len(reports)} stablecoins "
            f"in {elapsed * 1000:.0f}ms"
        )
        return RiskOutput(reports=reports, analysis_time=elapsed)

    def analyze_snapshot(self, snapshot: FeatureSnapshot) -> RiskReport:
        primary = self.primary_factors(snapshot)
        secondary = self.secondary_factors(snapshot)
        score = self.risk_score(snapshot, primary, secondary)
        level = self.bands.level_for(score)

        return RiskReport(
            asset_id=snapshot.asset_id,
            timestamp=snapshot.timestamp,
            risk_level=level,
            risk_score=score,
            primary_factors=primary,
            secondary_factors=secondary,
            summary=self._summary(snapshot.asset_id, level, primary),
            detailed_analysis=self._detailed_analysis(
                snapshot, level, score, primary, secondary
            ),
            data_sources=list(DATA_SOURCES),
            analysis_method=ANALYSIS_METHOD,
            confidence=self.confidence(snapshot),
        )

    def primary_factors(self, snapshot: FeatureSnapshot) -> List[RiskFactor]:
        factors: List[RiskFactor] = []
        trend = snapshot.trend.value

        price = snapshot.price_deviation
        if price.is_anomalous and price.severity > 0.5:
            evidence = [
                f"Price deviation {price.value:.3f}% exceeds dynamic threshold "
                f"{price.dynamic_threshold:.3f}%",
                f"Trend: {trend}",
            ]
            if price.value >= self.price_deviation_critical:
                evidence.append(
                    f"Deviation is above the critical threshold "
                    f"{self.price_deviation_critical:.2f}%"
                )
            factors.append(
                _factor(RiskCategory.PRICE_DEVIATION, price, 0.9, evidence)
            )

        liquidity = snapshot.liquidity_ratio
        if liquidity.is_anomalous and liquidity.severity > 0.6:
            factors.append(
                _factor(
                    RiskCategory.LIQUIDITY_CRISIS,
                    liquidity,
                    0.75,
                    [
                        f"Liquidity ratio {liquidity.value:.2f}% is outside the "
                        f"normal range around {liquidity.dynamic_threshold:.2f}%",
                        f"Trend: {trend}",
                    ],
                )
            )

        redeem = snapshot.redeem_pressure
        if redeem.is_anomalous and redeem.severity > 0.5:
            factors.append(
                _factor(
                    RiskCategory.REDEEM_PRESSURE,
                    redeem,
                    0.7,
                    [
                        f"Redemption pressure index {redeem.value:.2f} exceeds "
                        f"{redeem.dynamic_threshold:.2f}",
                        "Falling price together with surging volume",
                    ],
                )
            )

        whale = snapshot.whale_activity
        if whale.is_anomalous:
            factors.append(
                _factor(
                    RiskCategory.WHALE_ACTIVITY,
                    whale,
                    0.8,
                    [
                        f"Whale activity score {whale.value:.0f} exceeds "
                        f"{whale.dynamic_threshold:.0f}"
                    ],
                )
            )

        factors.sort(key=lambda f: f.severity, reverse=True)
        return factors

    def secondary_factors(self, snapshot: FeatureSnapshot) -> List[RiskFactor]:
        factors: List[RiskFactor] = []

        volatility = snapshot.volatility
        if volatility.is_anomalous and volatility.severity <= 0.5:
            factors.append(
                _factor(
                    RiskCategory.PRICE_DEVIATION,
                    volatility,
                    0.6,
                    [
                        f"Volatility {volatility.value:.3f}% above "
                        f"{volatility.dynamic_threshold:.3f}%"
                    ],
                )
            )

        concentration = snapshot.concentration_risk
        if concentration.is_anomalous:
            factors.append(
                _factor(
                    RiskCategory.RESERVE_CONCERN,
                    concentration,
                    0.5,
                    [f"Holder concentration {concentration.value:.1f}%"],
                )
            )

        return factors

    def risk_score(
        self,
        snapshot: FeatureSnapshot,
        primary: List[RiskFactor],
        secondary: List[RiskFactor],
    ) -> float:
        score = snapshot.overall_anomaly_score
        score += sum(f.severity * f.confidence * 20 for f in primary)
        score += sum(f.severity * f.confidence * 10 for f in secondary)
        score *= TREND_MULTIPLIERS[snapshot.trend]
        return min(max(score, 0.0), 100.0)

    def confidence(self, snapshot: FeatureSnapshot) -> float:
        # Concentration has no data source yet and is left out of the count
        counted = [
            snapshot.price_deviation,
            snapshot.volatility,
            snapshot.liquidity_ratio,
            snapshot.redeem_pressure,
            snapshot.whale_activity,
        ]
        anomalous = sum(1 for f in counted if f.is_anomalous)

        if anomalous >= 3:
            return 0.95
        elif anomalous >= 2:
            return 0.85
        return 0.8

    def _summary(
        self, asset_id: str, level: RiskLevel, primary: List[RiskFactor]
    ) -> str:
        symbol = asset_id.upper()
        label = LEVEL_LABELS[level]
        if not primary:
            return f"{symbol} risk is {label}; no significant anomalies detected"

        main = CATEGORY_LABELS[primary[0].category]
        return f"{symbol} risk is {label}; main concern: {main}"

    def _detailed_analysis(
        self,
        snapshot: FeatureSnapshot,
        level: RiskLevel,
        score: float,
        primary: List[RiskFactor],
        secondary: List[RiskFactor],
    ) -> str:
        lines = [
            f"Risk score {score:.1f}/100 ({LEVEL_LABELS[level]}), "
            f"trend {snapshot.trend.value}.",
            f"Overall anomaly score {snapshot.overall_anomaly_score:.1f}.",
        ]

        if primary:
            lines.append("Primary factors:")
            for factor in primary:
                lines.append(
                    f"- {CATEGORY_LABELS[factor.category]} "
                    f"(severity {factor.severity:.2f}, "
                    f"confidence {factor.confidence:.2f}): "
                    + "; ".join(factor.evidence)
                )

        if secondary:
            lines.append("Secondary factors:")
            for factor in secondary:
                lines.append(
                    f"- {CATEGORY_LABELS[factor.category]} "
                    f"(severity {factor.severity:.2f})"
                )

        if not primary and not secondary:
            lines.append("All monitored indicators are within normal ranges.")

        return "\n".join(lines)


def _factor(
    category: RiskCategory,
    feature: RiskFeature,
    confidence: float,
    evidence: List[str],
) -> RiskFactor:
    return RiskFactor(
        category=category,
        severity=feature.severity,
        confidence=confidence,
        evidence=evidence,
        related_features=[feature.name],
    )
