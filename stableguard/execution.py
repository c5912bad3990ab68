"""
Execution Stage
Transaction evaluation against a strategy bundle, strategy action dispatch
and the capped execution audit trail
"""

import logging
import time
import uuid
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Dict, List, Optional

from config import MAX_EXECUTION_RECORDS
from stableguard.assets import AssetConfig, match_contract
from stableguard.models import (
    ActionKind,
    ActionOutcome,
    ActionResult,
    Decision,
    ExecutionRecord,
    RiskReport,
    SchemaError,
    StrategyAction,
    StrategyBundle,
    TransactionContext,
    TransactionEvaluation,
    TriggerType,
)
from stableguard.monitoring import execution_actions
from stableguard.storage import RECORD_INDEX_KEY, KeyValueStore, record_key

logger = logging.getLogger(__name__)

# ERC-20 function selectors
TRANSFER_SELECTOR = "0xa9059cbb"
APPROVE_SELECTOR = "0x095ea7b3"

# "0x" + selector + address word + amount word
_AMOUNT_START = 2 + 8 + 64
_AMOUNT_END = _AMOUNT_START + 64

ActionHandler = Callable[[StrategyAction], Awaitable[bool]]


def parse_chain_id(raw: Any) -> int:
    """chainId as int or hex/decimal string; defaults to Ethereum mainnet"""
    if raw is None or raw == "":
        return 1
    if isinstance(raw, bool):
        raise ValueError(f"Invalid chain id: {raw!r}")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str):
        value = raw.strip().lower()
        if value.startswith("0x"):
            return int(value, 16)
        return int(value)
    raise ValueError(f"Invalid chain id: {raw!r}")


def parse_transaction(tx_params: Dict[str, Any]) -> TransactionContext:
    """Build the transaction context; the destination decides the asset"""
    chain_id = parse_chain_id(tx_params.get("chainId"))
    recipient = tx_params.get("to") or ""
    data = tx_params.get("data")

    context = TransactionContext(
        sender=tx_params.get("from") or "",
        recipient=recipient,
        value=tx_params.get("value") or "0x0",
        chain_id=chain_id,
        data=data,
    )

    asset = match_contract(recipient, chain_id)
    if not asset:
        return context

    context.is_monitored = True
    context.asset_id = asset.id

    if isinstance(data, str):
        selector = data[:10].lower()
        if selector == TRANSFER_SELECTOR:
            context.operation = "transfer"
        elif selector == APPROVE_SELECTOR:
            context.operation = "approve"

    if context.operation != "unknown":
        _decode_amount(context, asset)

    return context


def _decode_amount(context: TransactionContext, asset: AssetConfig) -> None:
    data = context.data or ""
    if len(data) < _AMOUNT_END:
        return

    try:
        raw = int(data[_AMOUNT_START:_AMOUNT_END], 16)
        amount = Decimal(raw).scaleb(-asset.decimals)
    except (ValueError, InvalidOperation):
        logger.debug(f"Could not decode amount from call data for {asset.id}")
        return

    context.amount = format(amount.normalize(), "f")
    context.amount_usd = float(amount) * asset.peg_target


def evaluate_transaction(
    tx_params: Dict[str, Any],
    bundle: StrategyBundle,
    report: Optional[RiskReport] = None,
    clock: Callable[[], float] = time.time,
) -> TransactionEvaluation:
    """
    Decide allow/warn/block for a transaction from the bundle's behavior

    No network or storage access; the bundle must already be current.
    """
    context = parse_transaction(tx_params)
    behavior = bundle.behavior
    ui = bundle.ui

    if not behavior.allow_transaction:
        decision = Decision.BLOCK
        message = behavior.block_reason or "Transaction blocked by risk control"
        details = ui.alert_message
    elif behavior.require_confirmation:
        decision = Decision.WARN
        message = "Risk detected, please confirm before continuing"
        details = behavior.confirmation_message or ""
    else:
        decision = Decision.ALLOW
        message = "Risk is acceptable, you may continue"
        details = ui.alert_message

    limit = behavior.suggested_amount_limit
    if (
        limit is not None
        and context.amount_usd is not None
        and context.amount_usd > limit
    ):
        details = (
            f"{details}\n\nAmount of about ${context.amount_usd:,.2f} exceeds the "
            f"suggested limit of ${limit:,.0f}"
        ).strip()

    logger.info(
        f"Transaction to {context.asset_id or context.recipient} "
        f"({context.operation}): {decision.value}"
    )

    return TransactionEvaluation(
        context=context,
        strategy_bundle=bundle,
        decision=decision,
        message=message,
        details=details,
        timestamp=clock(),
        risk_report=report,
    )


async def mark_for_ui(action: StrategyAction) -> bool:
    """Display and control actions are rendered by the wallet UI"""
    return True


DEFAULT_HANDLERS: Dict[ActionKind, ActionHandler] = {
    kind: mark_for_ui for kind in ActionKind
}


class ExecutionStage:
    """Executes strategy bundles and owns the execution record index"""

    def __init__(
        self,
        store: KeyValueStore,
        handlers: Optional[Dict[ActionKind, ActionHandler]] = None,
        clock: Callable[[], float] = time.time,
        max_records: int = MAX_EXECUTION_RECORDS,
    ):
        self.store = store
        self.handlers = dict(DEFAULT_HANDLERS)
        if handlers:
            self.handlers.update(handlers)
        self.max_records = max_records
        self._clock = clock

    async def execute_strategies(
        self,
        bundle: StrategyBundle,
        trigger_type: TriggerType,
        trigger_data: Optional[Dict[str, Any]] = None,
    ) -> ExecutionRecord:
        started = time.perf_counter()
        now = self._clock()
        logger.info(f"Executing strategies for {bundle.asset_id}")

        record = ExecutionRecord(
            id=f"exec-{int(now * 1000)}-{bundle.asset_id}-{uuid.uuid4().hex[:8]}",
            timestamp=now,
            asset_id=bundle.asset_id,
            trigger_type=trigger_type,
            executed_strategies=bundle.strategies,
            success=True,
            trigger_data=trigger_data,
        )

        for strategy in bundle.strategies:
            for action in strategy.actions:
                outcome = await self._execute_action(action)
                record.actions.append(outcome)
                execution_actions.labels(result=outcome.result.value).inc()
                if outcome.result == ActionResult.FAILED:
                    record.success = False

        await self._store_record(record)

        elapsed = time.perf_counter() - started
        logger.info(f"Execution completed in {elapsed * 1000:.0f}ms")
        return record

    async def _execute_action(self, action: StrategyAction) -> ActionOutcome:
        handler = self.handlers.get(action.kind)
        if handler is None:
            logger.warning(f"No handler for action {action.kind.value}")
            return ActionOutcome(
                kind=action.kind.value,
                target=action.target.value,
                result=ActionResult.SKIPPED,
                message="No handler registered",
            )

        try:
            executed = await handler(action)
        except Exception as e:
            logger.error(f"Action execution failed: {action.kind.value}: {e}")
            return ActionOutcome(
                kind=action.kind.value,
                target=action.target.value,
                result=ActionResult.FAILED,
                message=str(e),
            )

        return ActionOutcome(
            kind=action.kind.value,
            target=action.target.value,
            result=ActionResult.SUCCESS if executed else ActionResult.FAILED,
            message="Executed" if executed else "Action not executed",
        )

    async def _store_record(self, record: ExecutionRecord) -> None:
        try:
            await self.store.set(record_key(record.id), record.to_dict())

            index: List[str] = list(await self.store.get(RECORD_INDEX_KEY) or [])
            index.append(record.id)

            # FIFO by insertion order, not timestamp
            evicted: List[str] = []
            while len(index) > self.max_records:
                evicted.append(index.pop(0))

            await self.store.set(RECORD_INDEX_KEY, index)
            if evicted:
                await self.store.remove(*(record_key(i) for i in evicted))

            logger.debug(f"Execution record stored: {record.id}")
        except Exception as e:
            logger.error(f"Failed to store execution record {record.id}: {e}")

    async def get_execution_history(self, limit: int = 20) -> List[ExecutionRecord]:
        """Most recent records first"""
        if limit <= 0:
            return []

        try:
            index = list(await self.store.get(RECORD_INDEX_KEY) or [])
        except Exception as e:
            logger.error(f"Failed to read execution index: {e}")
            return []

        records: List[ExecutionRecord] = []
        for record_id in index[-limit:]:
            data = await self.store.get(record_key(record_id))
            if data is None:
                continue
            try:
                records.append(ExecutionRecord.from_dict(data))
            except SchemaError as e:
                logger.warning(f"Skipping unreadable execution record {record_id}: {e}")

        records.reverse()
        return records
