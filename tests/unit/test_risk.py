"""
Risk analysis tests: factor selection, score, trend adjustment, bands and
confidence, plus an end-to-end depeg scenario
"""

import pytest
import pytest_asyncio

from stableguard.features import FeatureCalculator
from stableguard.models import RiskBands, RiskCategory, RiskLevel, StrictMode, Trend
from stableguard.risk import RiskAnalyzer
from stableguard.strategy import build_bundle
from tests.factories import START_TIME, make_feature, make_observation, make_snapshot

pytestmark = pytest.mark.unit


@pytest.fixture
def analyzer():
    return RiskAnalyzer()


class TestRiskBands:
    @pytest.mark.parametrize(
        "score,level",
        [
            (0.0, RiskLevel.VERY_LOW),
            (19.999, RiskLevel.VERY_LOW),
            (20.0, RiskLevel.LOW),
            (39.9, RiskLevel.LOW),
            (40.0, RiskLevel.MEDIUM),
            (60.0, RiskLevel.HIGH),
            (79.99, RiskLevel.HIGH),
            (80.0, RiskLevel.VERY_HIGH),
            (100.0, RiskLevel.VERY_HIGH),
        ],
    )
    def test_inclusive_lower_bounds(self, score, level):
        assert RiskBands().level_for(score) == level

    def test_level_ordering(self):
        assert RiskLevel.HIGH.at_least(RiskLevel.MEDIUM)
        assert RiskLevel.HIGH.at_least(RiskLevel.HIGH)
        assert not RiskLevel.LOW.at_least(RiskLevel.MEDIUM)


class TestFactors:
    def test_quiet_snapshot(self, analyzer):
        report = analyzer.analyze_snapshot(make_snapshot())

        assert report.risk_level == RiskLevel.VERY_LOW
        assert report.risk_score == 0.0
        assert report.primary_factors == []
        assert report.secondary_factors == []
        assert report.confidence == 0.8
        assert report.summary == "USDT risk is very low; no significant anomalies detected"

    def test_severe_price_deviation_is_primary(self, analyzer):
        snapshot = make_snapshot(
            overall=24.0,
            price_deviation=make_feature(
                "price_deviation", value=1.0, anomalous=True, severity=1.0
            ),
        )
        report = analyzer.analyze_snapshot(snapshot)

        assert len(report.primary_factors) == 1
        factor = report.primary_factors[0]
        assert factor.category == RiskCategory.PRICE_DEVIATION
        assert factor.confidence == 0.9
        assert factor.related_features == ["price_deviation"]
        assert report.risk_score == pytest.approx(24.0 + 18.0)
        assert report.risk_level == RiskLevel.MEDIUM
        assert "main concern: price deviation" in report.summary

    def test_mild_price_deviation_is_not_primary(self, analyzer):
        snapshot = make_snapshot(
            price_deviation=make_feature(
                "price_deviation", value=0.6, anomalous=True, severity=0.4
            )
        )

        assert analyzer.primary_factors(snapshot) == []

    def test_critical_deviation_evidence(self, analyzer):
        snapshot = make_snapshot(
            price_deviation=make_feature(
                "price_deviation", value=2.5, anomalous=True, severity=1.0
            )
        )
        evidence = analyzer.primary_factors(snapshot)[0].evidence

        assert any("critical threshold" in line for line in evidence)

    def test_any_whale_anomaly_is_primary(self, analyzer):
        snapshot = make_snapshot(
            whale_activity=make_feature(
                "whale_activity", value=30.0, anomalous=True, severity=0.1
            )
        )
        factors = analyzer.primary_factors(snapshot)

        assert [f.category for f in factors] == [RiskCategory.WHALE_ACTIVITY]
        assert factors[0].confidence == 0.8

    def test_primary_sorted_by_severity(self, analyzer):
        snapshot = make_snapshot(
            price_deviation=make_feature(
                "price_deviation", anomalous=True, severity=0.6
            ),
            liquidity_ratio=make_feature(
                "liquidity_ratio", anomalous=True, severity=0.9
            ),
            redeem_pressure=make_feature(
                "redeem_pressure", anomalous=True, severity=0.7
            ),
        )
        categories = [f.category for f in analyzer.primary_factors(snapshot)]

        assert categories == [
            RiskCategory.LIQUIDITY_CRISIS,
            RiskCategory.REDEEM_PRESSURE,
            RiskCategory.PRICE_DEVIATION,
        ]

    def test_mild_volatility_is_secondary(self, analyzer):
        snapshot = make_snapshot(
            volatility=make_feature("volatility", anomalous=True, severity=0.5)
        )
        report = analyzer.analyze_snapshot(snapshot)

        assert report.primary_factors == []
        assert len(report.secondary_factors) == 1
        assert report.secondary_factors[0].confidence == 0.6
        assert report.risk_score == pytest.approx(0.5 * 0.6 * 10)

    def test_strong_volatility_is_neither(self, analyzer):
        snapshot = make_snapshot(
            volatility=make_feature("volatility", anomalous=True, severity=0.8)
        )

        assert analyzer.primary_factors(snapshot) == []
        assert analyzer.secondary_factors(snapshot) == []

    def test_concentration_is_reserve_concern(self, analyzer):
        snapshot = make_snapshot(
            concentration_risk=make_feature(
                "concentration_risk", value=45.0, anomalous=True, severity=0.4
            )
        )
        factors = analyzer.secondary_factors(snapshot)

        assert [f.category for f in factors] == [RiskCategory.RESERVE_CONCERN]
        assert factors[0].confidence == 0.5


class TestScore:
    @pytest.mark.parametrize(
        "trend,expected",
        [
            (Trend.STABLE, 50.0),
            (Trend.DETERIORATING, 60.0),
            (Trend.IMPROVING, 40.0),
        ],
    )
    def test_trend_multiplier(self, analyzer, trend, expected):
        report = analyzer.analyze_snapshot(make_snapshot(overall=50.0, trend=trend))

        assert report.risk_score == pytest.approx(expected)

    def test_score_clamped(self, analyzer):
        snapshot = make_snapshot(
            overall=95.0,
            trend=Trend.DETERIORATING,
            price_deviation=make_feature(
                "price_deviation", anomalous=True, severity=1.0
            ),
        )
        report = analyzer.analyze_snapshot(snapshot)

        assert report.risk_score == 100.0
        assert report.risk_level == RiskLevel.VERY_HIGH

    def test_score_monotone_in_factor_severity(self, analyzer):
        scores = []
        for severity in (0.0, 0.3, 0.55, 0.8, 1.0):
            snapshot = make_snapshot(
                overall=severity * 24.0,
                price_deviation=make_feature(
                    "price_deviation", anomalous=severity > 0, severity=severity
                ),
            )
            scores.append(analyzer.risk_score(
                snapshot,
                analyzer.primary_factors(snapshot),
                analyzer.secondary_factors(snapshot),
            ))

        assert scores == sorted(scores)

    @pytest.mark.parametrize("trend", list(Trend))
    def test_score_monotone_in_overall_anomaly(self, analyzer, trend):
        factor = make_feature("price_deviation", anomalous=True, severity=0.7)
        scores = [
            analyzer.analyze_snapshot(
                make_snapshot(overall=overall, trend=trend, price_deviation=factor)
            ).risk_score
            for overall in (0.0, 10.0, 25.0, 50.0, 75.0, 100.0)
        ]

        assert scores == sorted(scores)
        assert scores[0] < scores[-1]

    def test_deterministic(self, analyzer):
        snapshot = make_snapshot(
            overall=30.0,
            liquidity_ratio=make_feature(
                "liquidity_ratio", value=50.0, anomalous=True, severity=1.0
            ),
        )

        assert analyzer.analyze_snapshot(snapshot) == analyzer.analyze_snapshot(
            snapshot
        )


class TestConfidence:
    @pytest.mark.parametrize(
        "anomalous,expected",
        [
            ([], 0.8),
            (["price_deviation"], 0.8),
            (["price_deviation", "volatility"], 0.85),
            (["price_deviation", "volatility", "whale_activity"], 0.95),
        ],
    )
    def test_by_anomaly_count(self, analyzer, anomalous, expected):
        features = {
            name: make_feature(name, anomalous=True, severity=0.2)
            for name in anomalous
        }

        assert analyzer.confidence(make_snapshot(**features)) == expected

    def test_concentration_not_counted(self, analyzer):
        snapshot = make_snapshot(
            price_deviation=make_feature("price_deviation", anomalous=True),
            concentration_risk=make_feature("concentration_risk", anomalous=True),
        )

        assert analyzer.confidence(snapshot) == 0.8


@pytest.mark.asyncio
async def test_analyze_batch(analyzer):
    output = await analyzer.analyze(
        [make_snapshot("usdt"), make_snapshot("dai", overall=45.0)]
    )

    assert [r.asset_id for r in output.reports] == ["usdt", "dai"]
    assert output.reports[1].risk_level == RiskLevel.MEDIUM
    assert output.reports[1].summary.startswith("DAI risk is medium")


class TestDepegScenario:
    """USDT at 1.021 after six quiet samples, with 4.8% turnover"""

    @pytest_asyncio.fixture
    async def scenario(self, analyzer):
        calculator = FeatureCalculator()
        prices = [0.999, 1.001, 0.999, 1.001, 0.999, 1.001, 1.021]
        snapshot = None
        for i, price in enumerate(prices):
            output = await calculator.calculate(
                [
                    make_observation(
                        "usdt",
                        price=price,
                        timestamp=START_TIME + i * 300,
                        volume_24h=4.8e9,
                        market_cap=1e11,
                    )
                ]
            )
            snapshot = output.snapshots[0]
        return analyzer.analyze_snapshot(snapshot), snapshot

    @pytest.mark.asyncio
    async def test_only_price_deviation_is_anomalous(self, scenario):
        _, snapshot = scenario

        assert snapshot.price_deviation.value == pytest.approx(2.1)
        assert snapshot.price_deviation.is_anomalous
        assert snapshot.price_deviation.dynamic_threshold == pytest.approx(
            1.785, abs=0.01
        )
        assert snapshot.price_deviation.severity == pytest.approx(0.588, abs=0.005)
        assert not snapshot.volatility.is_anomalous
        assert snapshot.liquidity_ratio.value == pytest.approx(4.8)
        assert not snapshot.liquidity_ratio.is_anomalous
        assert snapshot.overall_anomaly_score == pytest.approx(14.1, abs=0.1)
        assert snapshot.trend == Trend.DETERIORATING

    @pytest.mark.asyncio
    async def test_report(self, scenario):
        report, _ = scenario

        assert [f.category for f in report.primary_factors] == [
            RiskCategory.PRICE_DEVIATION
        ]
        # (14.1 overall + 0.588 * 0.9 * 20) * 1.2 deteriorating
        assert report.risk_score == pytest.approx(29.6, abs=0.2)
        assert report.risk_level == RiskLevel.LOW
        assert report.confidence == 0.8

    @pytest.mark.asyncio
    async def test_warn_mode_allows_without_confirmation(self, scenario):
        report, _ = scenario

        bundle = build_bundle(report, StrictMode.WARN)

        assert bundle.behavior.allow_transaction
        assert not bundle.behavior.require_confirmation
