"""
StableGuard Data Models
Observations, features, risk reports, strategy bundles and audit records
flowing through the five-stage risk pipeline
"""

from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Type

# Bumped whenever a persisted payload changes shape
SCHEMA_VERSION = 1


class SchemaError(ValueError):
    """Raised when a persisted payload does not match the current schema"""

    pass


class RiskLevel(Enum):
    """Five-level ordinal risk grade"""

    VERY_LOW = "very_low"  # score < 20
    LOW = "low"  # 20 - 40
    MEDIUM = "medium"  # 40 - 60
    HIGH = "high"  # 60 - 80
    VERY_HIGH = "very_high"  # >= 80

    @property
    def rank(self) -> int:
        return _RISK_ORDER.index(self)

    def at_least(self, other: "RiskLevel") -> bool:
        return self.rank >= other.rank


_RISK_ORDER = [
    RiskLevel.VERY_LOW,
    RiskLevel.LOW,
    RiskLevel.MEDIUM,
    RiskLevel.HIGH,
    RiskLevel.VERY_HIGH,
]


class RiskCategory(Enum):
    PRICE_DEVIATION = "price_deviation"
    LIQUIDITY_CRISIS = "liquidity_crisis"
    WHALE_ACTIVITY = "whale_activity"
    REDEEM_PRESSURE = "redeem_pressure"
    RESERVE_CONCERN = "reserve_concern"
    REGULATORY_RISK = "regulatory_risk"
    SENTIMENT_NEGATIVE = "sentiment_negative"
    TECHNICAL_ISSUE = "technical_issue"


class StrictMode(Enum):
    """User-selected strictness for transaction control"""

    NONE = "none"
    WARN = "warn"
    BLOCK = "block"


class DataQuality(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class QuoteSource(Enum):
    """Where an observation's market data came from"""

    LIVE = "live"
    CACHE = "cache"  # fresh cache hit, no network call
    STALE_CACHE = "stale_cache"  # fetch failed, cache younger than 5x TTL
    FALLBACK = "fallback"  # fetch failed, peg target used


class Trend(Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    DETERIORATING = "deteriorating"


class StrategyType(Enum):
    INFORMATION = "information"
    RESOURCE = "resource"
    CONTROL = "control"
    COLLABORATION = "collaboration"


class ActionLevel(Enum):
    MONITOR = "monitor"
    WARN = "warn"
    RESTRICT = "restrict"
    BLOCK = "block"


class ActionTarget(Enum):
    USER = "user"
    SYSTEM = "system"
    TRANSACTION = "transaction"


class ActionKind(Enum):
    DISPLAY_STATUS = "display_status"
    DISPLAY_WARNING = "display_warning"
    DISPLAY_ALERT = "display_alert"
    REQUIRE_CONFIRMATION = "require_confirmation"
    SUGGEST_LIMIT = "suggest_limit"
    BLOCK = "block"


class ActionResult(Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class TriggerType(Enum):
    TRANSACTION = "transaction"
    SCHEDULED = "scheduled"
    MANUAL = "manual"


class Decision(Enum):
    ALLOW = "allow"
    WARN = "warn"
    BLOCK = "block"


class EventType(Enum):
    RISK_DETECTED = "risk_detected"
    STRATEGY_EXECUTED = "strategy_executed"
    TRANSACTION_EVALUATED = "transaction_evaluated"
    SYSTEM_ALERT = "system_alert"


@dataclass(frozen=True)
class RiskBands:
    """Inclusive lower bounds of the low..very-high bands"""

    low: float = 20.0
    medium: float = 40.0
    high: float = 60.0
    very_high: float = 80.0

    def level_for(self, score: float) -> RiskLevel:
        if score >= self.very_high:
            return RiskLevel.VERY_HIGH
        elif score >= self.high:
            return RiskLevel.HIGH
        elif score >= self.medium:
            return RiskLevel.MEDIUM
        elif score >= self.low:
            return RiskLevel.LOW
        else:
            return RiskLevel.VERY_LOW


# ---------------------------------------------------------------------------
# Data collection
# ---------------------------------------------------------------------------


@dataclass
class MarketQuote:
    """One price-source response for an asset"""

    price: float
    change_24h: float = 0.0
    volume_24h: float = 0.0
    market_cap: float = 0.0


@dataclass
class LargeTransfer:
    tx_hash: str
    sender: str
    recipient: str
    amount: str
    timestamp: float


@dataclass
class RawObservation:
    """Normalized per-asset observation for one collection cycle"""

    asset_id: str
    timestamp: float
    price: float
    price_change_24h: float
    volume_24h: float
    market_cap: float
    source: QuoteSource = QuoteSource.LIVE
    total_supply: Optional[str] = None
    large_transfers: List[LargeTransfer] = field(default_factory=list)

    # Placeholders until a sentiment feed exists
    sentiment_score: Optional[float] = None
    news_count: Optional[int] = None


@dataclass
class CollectionOutput:
    observations: List[RawObservation]
    collection_time: float
    data_quality: DataQuality
    errors: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Features
# ---------------------------------------------------------------------------


@dataclass
class RiskFeature:
    name: str
    value: float
    threshold: float
    dynamic_threshold: float
    is_anomalous: bool
    severity: float  # 0-1
    description: str


@dataclass
class FeatureSnapshot:
    """All six features for one asset at one timestamp"""

    asset_id: str
    timestamp: float
    price_deviation: RiskFeature
    volatility: RiskFeature
    liquidity_ratio: RiskFeature
    redeem_pressure: RiskFeature
    whale_activity: RiskFeature
    concentration_risk: RiskFeature
    overall_anomaly_score: float  # 0-100
    trend: Trend = Trend.STABLE

    @property
    def features(self) -> List[RiskFeature]:
        return [
            self.price_deviation,
            self.volatility,
            self.liquidity_ratio,
            self.redeem_pressure,
            self.whale_activity,
            self.concentration_risk,
        ]


@dataclass
class FeatureOutput:
    snapshots: List[FeatureSnapshot]
    calculation_time: float
    window_size: int


# ---------------------------------------------------------------------------
# Risk analysis
# ---------------------------------------------------------------------------


@dataclass
class RiskFactor:
    category: RiskCategory
    severity: float  # 0-1
    confidence: float  # 0-1
    evidence: List[str] = field(default_factory=list)
    related_features: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RiskFactor":
        return cls(
            category=RiskCategory(data["category"]),
            severity=float(data["severity"]),
            confidence=float(data["confidence"]),
            evidence=[str(e) for e in data.get("evidence", [])],
            related_features=[str(f) for f in data.get("related_features", [])],
        )


@dataclass
class RiskReport:
    """Per-asset risk grade, score and contributing factors"""

    asset_id: str
    timestamp: float
    risk_level: RiskLevel
    risk_score: float  # 0-100
    primary_factors: List[RiskFactor]
    secondary_factors: List[RiskFactor]
    summary: str
    detailed_analysis: str
    data_sources: List[str]
    analysis_method: str
    confidence: float

    # Attached at persistence time for price charts
    current_price: Optional[float] = None
    price_change_24h: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return _versioned(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RiskReport":
        _check_version(data, "risk report")
        try:
            report = cls(
                asset_id=str(data["asset_id"]),
                timestamp=float(data["timestamp"]),
                risk_level=RiskLevel(data["risk_level"]),
                risk_score=float(data["risk_score"]),
                primary_factors=[
                    RiskFactor.from_dict(f) for f in data["primary_factors"]
                ],
                secondary_factors=[
                    RiskFactor.from_dict(f) for f in data["secondary_factors"]
                ],
                summary=str(data["summary"]),
                detailed_analysis=str(data["detailed_analysis"]),
                data_sources=[str(s) for s in data["data_sources"]],
                analysis_method=str(data["analysis_method"]),
                confidence=float(data["confidence"]),
                current_price=_optional_float(data.get("current_price")),
                price_change_24h=_optional_float(data.get("price_change_24h")),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise SchemaError(f"Invalid risk report payload: {e}") from e

        if not 0.0 <= report.risk_score <= 100.0:
            raise SchemaError(f"Risk score out of range: {report.risk_score}")
        return report

    def summary_dict(self) -> Dict[str, Any]:
        """Outbound per-asset summary for UI and notification consumers"""
        return {
            "id": self.asset_id,
            "risk_level": self.risk_level.value,
            "risk_score": self.risk_score,
            "summary": self.summary,
        }


@dataclass
class RiskOutput:
    reports: List[RiskReport]
    analysis_time: float


# ---------------------------------------------------------------------------
# Strategy actions (closed set of kinds, each with a typed payload)
# ---------------------------------------------------------------------------


@dataclass
class DisplayParams:
    level: str  # info, warning, error
    message: str
    details: Optional[str] = None
    urgent: bool = False


@dataclass
class ConfirmationParams:
    message: str
    details: Optional[str] = None


@dataclass
class LimitParams:
    suggested_max_usd: float
    reason: str


@dataclass
class BlockParams:
    reason: str
    risk_level: RiskLevel


ACTION_PARAMS: Dict[ActionKind, Type] = {
    ActionKind.DISPLAY_STATUS: DisplayParams,
    ActionKind.DISPLAY_WARNING: DisplayParams,
    ActionKind.DISPLAY_ALERT: DisplayParams,
    ActionKind.REQUIRE_CONFIRMATION: ConfirmationParams,
    ActionKind.SUGGEST_LIMIT: LimitParams,
    ActionKind.BLOCK: BlockParams,
}


@dataclass
class StrategyAction:
    target: ActionTarget
    kind: ActionKind
    params: Any

    def __post_init__(self):
        expected = ACTION_PARAMS[self.kind]
        if not isinstance(self.params, expected):
            raise TypeError(
                f"{self.kind.value} expects {expected.__name__}, "
                f"got {type(self.params).__name__}"
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StrategyAction":
        kind = ActionKind(data["kind"])
        raw = dict(data.get("params") or {})
        if kind == ActionKind.BLOCK:
            raw["risk_level"] = RiskLevel(raw["risk_level"])
        params = ACTION_PARAMS[kind](**raw)
        return cls(target=ActionTarget(data["target"]), kind=kind, params=params)


@dataclass
class Strategy:
    id: str
    type: StrategyType
    action_level: ActionLevel
    priority: int  # 1-5
    title: str
    description: str
    actions: List[StrategyAction]
    expected_impact: str
    is_compliant: bool = True
    potential_side_effects: List[str] = field(default_factory=list)
    compliance_notes: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Strategy":
        return cls(
            id=str(data["id"]),
            type=StrategyType(data["type"]),
            action_level=ActionLevel(data["action_level"]),
            priority=int(data["priority"]),
            title=str(data["title"]),
            description=str(data["description"]),
            actions=[StrategyAction.from_dict(a) for a in data["actions"]],
            expected_impact=str(data["expected_impact"]),
            is_compliant=bool(data.get("is_compliant", True)),
            potential_side_effects=list(data.get("potential_side_effects", [])),
            compliance_notes=data.get("compliance_notes"),
        )


@dataclass
class UIRecommendations:
    display_color: str  # green, yellow, orange, red
    alert_message: str
    show_warning_badge: bool
    details_url: Optional[str] = None


@dataclass
class BehaviorRecommendations:
    allow_transaction: bool = True
    require_confirmation: bool = False
    confirmation_message: Optional[str] = None
    suggested_amount_limit: Optional[float] = None
    block_reason: Optional[str] = None


@dataclass
class StrategyBundle:
    """Strategies plus UI and behavioral recommendations for one asset"""

    asset_id: str
    risk_level: RiskLevel
    timestamp: float
    strategies: List[Strategy]
    ui: UIRecommendations
    behavior: BehaviorRecommendations
    # Mode the control strategies were built under
    strict_mode: Optional[StrictMode] = None

    def to_dict(self) -> Dict[str, Any]:
        return _versioned(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StrategyBundle":
        _check_version(data, "strategy bundle")
        try:
            behavior = dict(data["behavior"])
            return cls(
                asset_id=str(data["asset_id"]),
                risk_level=RiskLevel(data["risk_level"]),
                timestamp=float(data["timestamp"]),
                strategies=[Strategy.from_dict(s) for s in data["strategies"]],
                ui=UIRecommendations(**data["ui"]),
                behavior=BehaviorRecommendations(
                    allow_transaction=bool(behavior["allow_transaction"]),
                    require_confirmation=bool(behavior["require_confirmation"]),
                    confirmation_message=behavior.get("confirmation_message"),
                    suggested_amount_limit=_optional_float(
                        behavior.get("suggested_amount_limit")
                    ),
                    block_reason=behavior.get("block_reason"),
                ),
                strict_mode=(
                    StrictMode(data["strict_mode"])
                    if data.get("strict_mode") is not None
                    else None
                ),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise SchemaError(f"Invalid strategy bundle payload: {e}") from e


# ---------------------------------------------------------------------------
# Execution and audit
# ---------------------------------------------------------------------------


@dataclass
class ActionOutcome:
    kind: str
    target: str
    result: ActionResult
    message: Optional[str] = None


@dataclass
class ExecutionRecord:
    """Immutable audit entry written once per strategy execution"""

    id: str
    timestamp: float
    asset_id: str
    trigger_type: TriggerType
    executed_strategies: List[Strategy]
    success: bool
    actions: List[ActionOutcome] = field(default_factory=list)
    trigger_data: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return _versioned(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutionRecord":
        _check_version(data, "execution record")
        try:
            return cls(
                id=str(data["id"]),
                timestamp=float(data["timestamp"]),
                asset_id=str(data["asset_id"]),
                trigger_type=TriggerType(data["trigger_type"]),
                executed_strategies=[
                    Strategy.from_dict(s) for s in data["executed_strategies"]
                ],
                success=bool(data["success"]),
                actions=[
                    ActionOutcome(
                        kind=str(a["kind"]),
                        target=str(a["target"]),
                        result=ActionResult(a["result"]),
                        message=a.get("message"),
                    )
                    for a in data["actions"]
                ],
                trigger_data=data.get("trigger_data"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise SchemaError(f"Invalid execution record payload: {e}") from e


@dataclass
class TransactionContext:
    sender: str
    recipient: str
    value: str
    chain_id: int
    data: Optional[str] = None
    is_monitored: bool = False
    asset_id: Optional[str] = None
    operation: str = "unknown"  # transfer, approve, unknown
    amount: Optional[str] = None
    amount_usd: Optional[float] = None


@dataclass
class TransactionEvaluation:
    context: TransactionContext
    strategy_bundle: StrategyBundle
    decision: Decision
    message: str
    details: str
    timestamp: float
    risk_report: Optional[RiskReport] = None

    def to_dict(self) -> Dict[str, Any]:
        """Outbound decision record"""
        return {
            "decision": self.decision.value,
            "message": self.message,
            "details": self.details,
            "asset_id": self.context.asset_id,
            "operation": self.context.operation,
            "risk_level": self.strategy_bundle.risk_level.value,
            "allow_transaction": self.strategy_bundle.behavior.allow_transaction,
            "require_confirmation": self.strategy_bundle.behavior.require_confirmation,
            "timestamp": self.timestamp,
        }


@dataclass
class GuardEvent:
    id: str
    timestamp: float
    asset_id: str
    event_type: EventType
    severity: RiskLevel
    title: str
    description: str
    related_data: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return to_plain(self)


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def to_plain(value: Any) -> Any:
    """Convert dataclasses and enums into JSON-compatible structures"""
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_plain(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, dict):
        return {str(k): to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    return value


def _versioned(value: Any) -> Dict[str, Any]:
    data = to_plain(value)
    data["schema_version"] = SCHEMA_VERSION
    return data


def _check_version(data: Any, what: str) -> None:
    if not isinstance(data, dict):
        raise SchemaError(f"Expected {what} mapping, got {type(data).__name__}")
    version = data.get("schema_version")
    if version != SCHEMA_VERSION:
        raise SchemaError(
            f"Unsupported {what} schema version {version!r} "
            f"(expected {SCHEMA_VERSION})"
        )


def _optional_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)
