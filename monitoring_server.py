"""
HTTP Monitoring Server
Health, metrics and status endpoints plus the risk and transaction API
"""
import asyncio
import json
import logging
from typing import Optional

from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from stableguard.assets import get_asset
from stableguard.guard import ERROR_DISABLED, ERROR_IN_PROGRESS, StableGuard
from stableguard.monitoring import HealthChecker, liveness

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 20


class MonitoringServer:
    """HTTP server for monitoring and risk endpoints"""

    def __init__(self, guard: StableGuard, host: str = "0.0.0.0", port: int = 8080):
        self.guard = guard
        self.host = host
        self.port = port
        self.app: Optional[web.Application] = None

    def create_app(self) -> web.Application:
        """Create aiohttp application with monitoring routes"""
        app = web.Application()

        # Health check routes
        app.router.add_get('/health', self.handle_health)
        app.router.add_get('/health/live', self.handle_live)

        # Metrics and status
        app.router.add_get('/metrics', self.handle_metrics)
        app.router.add_get('/status', self.handle_status)

        # Risk API
        app.router.add_get('/assets/{asset_id}/risk', self.handle_asset_risk)
        app.router.add_post('/assessments', self.handle_assessment)
        app.router.add_post('/transactions/evaluate', self.handle_evaluate)
        app.router.add_get('/executions', self.handle_executions)
        app.router.add_get('/events', self.handle_events)

        # Root endpoint
        app.router.add_get('/', self.handle_root)

        self.app = app
        return app

    async def handle_health(self, request: web.Request) -> web.Response:
        """Health check endpoint"""
        try:
            health_data = await HealthChecker.get_comprehensive_health(
                self.guard.store, self.guard.collector.price_source
            )
            status_code = 200 if health_data["status"] == "healthy" else 503

            return web.json_response(health_data, status=status_code)

        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return web.json_response({
                "status": "unhealthy",
                "error": str(e)
            }, status=500)

    async def handle_live(self, request: web.Request) -> web.Response:
        """Liveness probe"""
        return web.json_response(liveness(), status=200)

    async def handle_metrics(self, request: web.Request) -> web.Response:
        """Prometheus metrics endpoint"""
        try:
            return web.Response(
                body=generate_latest(),
                headers={"Content-Type": CONTENT_TYPE_LATEST},
                status=200
            )

        except Exception as e:
            logger.error(f"Metrics collection failed: {e}")
            return web.Response(
                text=f"# Error collecting metrics: {e}",
                content_type="text/plain",
                status=500
            )

    async def handle_status(self, request: web.Request) -> web.Response:
        """Detailed system status endpoint"""
        try:
            status_data = await self.guard.status()
            return web.json_response(status_data, status=200)

        except Exception as e:
            logger.error(f"Status check failed: {e}")
            return web.json_response({
                "error": str(e)
            }, status=500)

    async def handle_asset_risk(self, request: web.Request) -> web.Response:
        """Latest risk report for one asset"""
        asset_id = request.match_info["asset_id"].lower()
        if not get_asset(asset_id):
            return web.json_response(
                {"error": f"Unknown stablecoin: {asset_id}"}, status=404
            )

        report = await self.guard.get_latest_report(asset_id)
        if report is None:
            return web.json_response(
                {"error": f"No assessment available for {asset_id}"}, status=404
            )
        return web.json_response(report.to_dict(), status=200)

    async def handle_assessment(self, request: web.Request) -> web.Response:
        """Run a full assessment now"""
        result = await self.guard.perform_risk_assessment()

        if result.success:
            status_code = 200
        elif result.error == ERROR_IN_PROGRESS:
            status_code = 409
        elif result.error == ERROR_DISABLED:
            status_code = 503
        else:
            status_code = 500

        return web.json_response(result.to_dict(), status=status_code)

    async def handle_evaluate(self, request: web.Request) -> web.Response:
        """Evaluate a pending transaction; body is the wallet's tx params"""
        try:
            tx_params = await request.json()
        except json.JSONDecodeError:
            return web.json_response({"error": "Invalid JSON body"}, status=400)

        if not isinstance(tx_params, dict):
            return web.json_response(
                {"error": "Transaction params must be an object"}, status=400
            )

        evaluation = await self.guard.evaluate_transaction(tx_params)
        if evaluation is None:
            return web.json_response({"decision": None}, status=200)
        return web.json_response(evaluation.to_dict(), status=200)

    async def handle_executions(self, request: web.Request) -> web.Response:
        """Execution audit trail, newest first"""
        limit = _limit(request)
        if limit is None:
            return web.json_response({"error": "Invalid limit"}, status=400)

        records = await self.guard.get_execution_history(limit)
        return web.json_response(
            {"executions": [record.to_dict() for record in records]}, status=200
        )

    async def handle_events(self, request: web.Request) -> web.Response:
        """Guard events, newest first"""
        limit = _limit(request)
        if limit is None:
            return web.json_response({"error": "Invalid limit"}, status=400)

        events = await self.guard.get_event_history(limit)
        return web.json_response({"events": events}, status=200)

    async def handle_root(self, request: web.Request) -> web.Response:
        """Root endpoint with available routes"""
        return web.json_response({
            "service": "StableGuard",
            "endpoints": {
                "/health": "Storage and price source health",
                "/health/live": "Liveness probe",
                "/metrics": "Prometheus metrics",
                "/status": "Guard status and last assessment metrics",
                "/assets/{asset_id}/risk": "Latest risk report",
                "/assessments": "POST: run a full assessment",
                "/transactions/evaluate": "POST: evaluate a transaction",
                "/executions": "Execution audit trail",
                "/events": "Guard events"
            }
        })

    async def start(self) -> web.AppRunner:
        """Start the monitoring server"""
        if not self.app:
            self.create_app()

        runner = web.AppRunner(self.app)
        await runner.setup()

        site = web.TCPSite(runner, self.host, self.port)
        await site.start()

        logger.info(f"Monitoring server started on {self.host}:{self.port}")
        logger.info("Available endpoints:")
        logger.info(f"  Health: http://{self.host}:{self.port}/health")
        logger.info(f"  Metrics: http://{self.host}:{self.port}/metrics")
        logger.info(f"  Status: http://{self.host}:{self.port}/status")

        return runner


def _limit(request: web.Request) -> Optional[int]:
    raw = request.query.get("limit")
    if raw is None:
        return DEFAULT_HISTORY_LIMIT
    try:
        limit = int(raw)
    except ValueError:
        return None
    return limit if limit >= 0 else None


async def run_monitoring_server():
    """Run the server with a guard on the configured store, without scheduling"""
    from service.main import build_guard
    from stableguard.config_manager import get_config

    config = get_config()
    guard = await build_guard(config)

    server = MonitoringServer(guard, host=config.server.host, port=config.server.port)
    runner = await server.start()

    try:
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    asyncio.run(run_monitoring_server())
