"""
Strategy Generation Stage
Maps a risk report and the user's strictness mode to information and control
strategies plus UI and behavioral recommendations
"""

import logging
from typing import List

from config import SUGGESTED_LIMIT_USD
from stableguard.models import (
    ActionKind,
    ActionLevel,
    ActionTarget,
    BehaviorRecommendations,
    BlockParams,
    ConfirmationParams,
    DisplayParams,
    LimitParams,
    RiskLevel,
    RiskReport,
    Strategy,
    StrategyAction,
    StrategyBundle,
    StrategyType,
    StrictMode,
    UIRecommendations,
)
from stableguard.risk import LEVEL_LABELS

logger = logging.getLogger(__name__)

DISPLAY_COLORS = {
    RiskLevel.VERY_LOW: "green",
    RiskLevel.LOW: "green",
    RiskLevel.MEDIUM: "yellow",
    RiskLevel.HIGH: "orange",
    RiskLevel.VERY_HIGH: "red",
}

ALERT_MESSAGES = {
    RiskLevel.VERY_LOW: "Risk is very low, operate normally",
    RiskLevel.LOW: "Risk is low, operate normally",
    RiskLevel.MEDIUM: "Moderate risk detected, proceed with caution",
    RiskLevel.HIGH: "High risk, consider postponing large operations",
    RiskLevel.VERY_HIGH: "Very high risk, pausing operations is strongly advised",
}


class StrategyGenerator:
    """Pure mapping from reports to bundles; holds only the limit reference"""

    def __init__(self, suggested_limit_usd: float = SUGGESTED_LIMIT_USD):
        self.suggested_limit_usd = suggested_limit_usd

    async def generate(
        self, reports: List[RiskReport], mode: StrictMode
    ) -> List[StrategyBundle]:
        bundles: List[StrategyBundle] = []
        for report in reports:
            try:
                bundles.append(build_bundle(report, mode, self.suggested_limit_usd))
            except Exception as e:
                logger.error(f"Strategy generation failed for {report.asset_id}: {e}")

        logger.info(f"Generated strategy bundles for {len(bundles)} stablecoins")
        return bundles


def build_bundle(
    report: RiskReport,
    mode: StrictMode,
    suggested_limit_usd: float = SUGGESTED_LIMIT_USD,
) -> StrategyBundle:
    """Strategy bundle for one report; same (report, mode) gives the same bundle"""
    strategies = information_strategies(report)
    strategies.extend(control_strategies(report, mode, suggested_limit_usd))

    return StrategyBundle(
        asset_id=report.asset_id,
        risk_level=report.risk_level,
        timestamp=report.timestamp,
        strategies=strategies,
        ui=ui_recommendations(report),
        behavior=behavior_recommendations(report, mode, suggested_limit_usd),
        strict_mode=mode,
    )


def information_strategies(report: RiskReport) -> List[Strategy]:
    asset_id = report.asset_id
    level = report.risk_level

    if level.at_least(RiskLevel.HIGH):
        return [
            Strategy(
                id=f"info-{asset_id}-alert",
                type=StrategyType.INFORMATION,
                action_level=ActionLevel.WARN,
                priority=3,
                title="High risk alert",
                description="High risk detected; pausing large operations is advised",
                actions=[
                    StrategyAction(
                        ActionTarget.USER,
                        ActionKind.DISPLAY_ALERT,
                        DisplayParams(
                            level="error",
                            message=report.summary,
                            details=report.detailed_analysis,
                            urgent=True,
                        ),
                    )
                ],
                expected_impact="User is warned away from high-risk operations",
            )
        ]

    if level == RiskLevel.MEDIUM:
        return [
            Strategy(
                id=f"info-{asset_id}-warning",
                type=StrategyType.INFORMATION,
                action_level=ActionLevel.WARN,
                priority=2,
                title="Risk warning",
                description="Moderate risk detected; proceed with caution",
                actions=[
                    StrategyAction(
                        ActionTarget.USER,
                        ActionKind.DISPLAY_WARNING,
                        DisplayParams(
                            level="warning",
                            message=report.summary,
                            details=report.detailed_analysis,
                        ),
                    )
                ],
                expected_impact="User becomes aware of the elevated risk",
            )
        ]

    return [
        Strategy(
            id=f"info-{asset_id}-status",
            type=StrategyType.INFORMATION,
            action_level=ActionLevel.MONITOR,
            priority=1,
            title="Status normal",
            description="Risk is low; monitoring continues",
            actions=[
                StrategyAction(
                    ActionTarget.USER,
                    ActionKind.DISPLAY_STATUS,
                    DisplayParams(level="info", message=report.summary),
                )
            ],
            expected_impact="User knows the current status",
        )
    ]


def control_strategies(
    report: RiskReport,
    mode: StrictMode,
    suggested_limit_usd: float = SUGGESTED_LIMIT_USD,
) -> List[Strategy]:
    asset_id = report.asset_id
    level = report.risk_level

    if not level.at_least(RiskLevel.MEDIUM):
        return []

    if mode == StrictMode.BLOCK and level.at_least(RiskLevel.HIGH):
        return [
            Strategy(
                id=f"control-{asset_id}-block",
                type=StrategyType.CONTROL,
                action_level=ActionLevel.BLOCK,
                priority=5,
                title="Block transaction",
                description="Risk is too high; related transactions are paused",
                actions=[
                    StrategyAction(
                        ActionTarget.TRANSACTION,
                        ActionKind.BLOCK,
                        BlockParams(
                            reason="Risk level is too high; transactions are "
                            "paused to protect your assets",
                            risk_level=level,
                        ),
                    )
                ],
                expected_impact="Prevents losses during a high-risk period",
                potential_side_effects=["User may be unable to exit a position"],
                compliance_notes="Based on the user's pre-authorized risk settings",
            )
        ]

    strategies: List[Strategy] = []
    if mode == StrictMode.WARN or level == RiskLevel.MEDIUM:
        strategies.append(
            Strategy(
                id=f"control-{asset_id}-confirm",
                type=StrategyType.CONTROL,
                action_level=ActionLevel.RESTRICT,
                priority=3,
                title="Require confirmation",
                description="User must acknowledge the risk before continuing",
                actions=[
                    StrategyAction(
                        ActionTarget.TRANSACTION,
                        ActionKind.REQUIRE_CONFIRMATION,
                        ConfirmationParams(
                            message=f"{asset_id.upper()} is at "
                            f"{LEVEL_LABELS[level]} risk. Continue?",
                            details=report.summary,
                        ),
                    )
                ],
                expected_impact="User makes an informed decision",
            )
        )

        if level.at_least(RiskLevel.HIGH):
            strategies.append(
                Strategy(
                    id=f"control-{asset_id}-limit",
                    type=StrategyType.CONTROL,
                    action_level=ActionLevel.RESTRICT,
                    priority=4,
                    title="Suggested limit",
                    description="Reduce the size of individual transactions",
                    actions=[
                        StrategyAction(
                            ActionTarget.TRANSACTION,
                            ActionKind.SUGGEST_LIMIT,
                            LimitParams(
                                suggested_max_usd=suggested_limit_usd,
                                reason="Spread operations out during high risk",
                            ),
                        )
                    ],
                    expected_impact="Limits the loss on any single transaction",
                )
            )

    return strategies


def ui_recommendations(report: RiskReport) -> UIRecommendations:
    level = report.risk_level
    return UIRecommendations(
        display_color=DISPLAY_COLORS[level],
        alert_message=ALERT_MESSAGES[level],
        show_warning_badge=level.at_least(RiskLevel.MEDIUM),
    )


def behavior_recommendations(
    report: RiskReport,
    mode: StrictMode,
    suggested_limit_usd: float = SUGGESTED_LIMIT_USD,
) -> BehaviorRecommendations:
    level = report.risk_level
    symbol = report.asset_id.upper()

    if level.at_least(RiskLevel.HIGH) and mode == StrictMode.BLOCK:
        return BehaviorRecommendations(
            allow_transaction=False,
            block_reason=(
                f"{symbol} is at {LEVEL_LABELS[level]} risk; related transactions "
                f"are paused to protect your assets.\n\n{report.summary}"
            ),
        )

    if level.at_least(RiskLevel.MEDIUM):
        return BehaviorRecommendations(
            allow_transaction=True,
            require_confirmation=True,
            confirmation_message=(
                f"Risk notice\n\n{report.summary}\n\n"
                "Please confirm you understand the current risk and want to continue."
            ),
            suggested_amount_limit=(
                suggested_limit_usd if level.at_least(RiskLevel.HIGH) else None
            ),
        )

    return BehaviorRecommendations()
