#!/usr/bin/env python3
"""
SwiftScan Self-Checkout
Scan-to-cart, scan-to-bag verification, AI shopping insights and a mocked
payment flow, served over HTTP and WebSocket.
"""

import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings, load_settings
from .services.catalog import Catalog, ProductNotFound
from .services.checkout import (
    AppView,
    CheckoutSession,
    InvalidTransition,
    SessionManager,
    VerificationRequired,
)
from .services.insights import InsightsService
from .services.payment import PaymentDetails, PaymentService, PaymentValidationError
from .services.scanner import BarcodeDecoder, ScanDebouncer, ScanResolver, decode_data_url

logger = logging.getLogger(__name__)


def setup_logging(settings: Settings):
    """Setup logging configuration"""
    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_dir / "app.log"),
            logging.StreamHandler(sys.stdout)
        ]
    )

    return logging.getLogger(__name__)


# WebSocket connections manager
class ConnectionManager:
    def __init__(self):
        self.active_connections: list[WebSocket] = []

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.append(websocket)
        logger.info(f"WebSocket connected. Total connections: {len(self.active_connections)}")

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
        logger.info(f"WebSocket disconnected. Total connections: {len(self.active_connections)}")

    async def broadcast(self, message: dict):
        for connection in list(self.active_connections):
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.warning(f"Dropping websocket after failed send: {e}")
                self.disconnect(connection)


def error_response(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


def create_app(
    settings: Settings = None,
    catalog: Catalog = None,
    insights_service: InsightsService = None,
) -> FastAPI:
    settings = settings or load_settings()
    catalog = catalog or Catalog.from_file(settings.catalog_path)
    insights_service = insights_service or InsightsService(
        api_key=settings.api_key, model=settings.gemini_model
    )

    payment_service = PaymentService(
        tax_rate=settings.tax_rate, delay_seconds=settings.payment_delay_seconds
    )
    session_manager = SessionManager(payment_service)
    resolver = ScanResolver(catalog)
    decoder = BarcodeDecoder()
    manager = ConnectionManager()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        logger.info(f"Catalog ready with {len(catalog)} products")

        # Periodic cleanup task
        async def cleanup_task():
            while True:
                await asyncio.sleep(3600)  # Every hour
                session_manager.cleanup_old_sessions(settings.session_max_age_hours)

        task = asyncio.create_task(cleanup_task())

        yield
        # Shutdown
        task.cancel()
        logger.info("Shutting down...")

    app = FastAPI(title="SwiftScan Self-Checkout", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.sessions = session_manager
    app.state.connections = manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    async def apply_scan(session: CheckoutSession, product, mode: str = None) -> dict:
        """Enter the scan view for mode (if given) and apply one scan"""
        if mode:
            session.start_scanning(mode)
        bag_mode = session.view == AppView.SCAN_BAG
        changed = session.scan(product)

        await manager.broadcast({
            "type": "bag_updated" if bag_mode else "cart_updated",
            "session_id": session.session_id,
            "product_id": product.id,
            "product_name": product.name,
            "changed": changed,
        })

        return {
            "success": True,
            "changed": changed,
            "product": product.to_dict(),
            "session": session.snapshot(),
        }

    # ============================================================================
    # CATALOG & SESSION
    # ============================================================================

    @app.get("/api/products")
    async def get_products():
        return [p.to_dict() for p in catalog.get_products()]

    @app.get("/api/session")
    async def get_session(session_id: str = None):
        return session_manager.get_session(session_id).snapshot()

    @app.post("/api/navigate")
    async def navigate(data: dict):
        session = session_manager.get_session(data.get("session_id"))
        try:
            view = AppView(data.get("view"))
        except ValueError:
            return error_response(400, f"Unknown view: {data.get('view')}")

        try:
            session.navigate(view)
        except VerificationRequired as e:
            return error_response(409, str(e), remaining=e.remaining)
        except InvalidTransition as e:
            return error_response(409, str(e))

        return session.snapshot()

    # ============================================================================
    # SCANNING
    # ============================================================================

    @app.post("/api/scan")
    async def scan_barcode(data: dict):
        """Barcode scan or manual barcode entry"""
        session = session_manager.get_session(data.get("session_id"))
        try:
            product = resolver.require(str(data.get("code", "")))
            return await apply_scan(session, product, data.get("mode"))
        except ProductNotFound as e:
            return error_response(404, str(e))
        except InvalidTransition as e:
            return error_response(409, str(e))
        except ValueError as e:
            return error_response(400, str(e))

    @app.post("/api/scan/simulate")
    async def simulate_scan(data: dict):
        """Simulation tap on a catalog product"""
        session = session_manager.get_session(data.get("session_id"))
        try:
            product = catalog.require(str(data.get("product_id", "")))
            return await apply_scan(session, product, data.get("mode"))
        except ProductNotFound as e:
            return error_response(404, str(e))
        except InvalidTransition as e:
            return error_response(409, str(e))
        except ValueError as e:
            return error_response(400, str(e))

    # ============================================================================
    # INSIGHTS, CHECKOUT & PAYMENT
    # ============================================================================

    @app.get("/api/insights")
    async def get_insights(session_id: str = None):
        session = session_manager.get_session(session_id)
        insights = await session.get_insights(insights_service)
        return {"insights": insights.to_dict() if insights else None}

    @app.post("/api/checkout")
    async def begin_checkout(data: dict = None):
        session = session_manager.get_session((data or {}).get("session_id"))
        try:
            session.begin_checkout()
        except VerificationRequired as e:
            return error_response(409, str(e), remaining=e.remaining)
        except InvalidTransition as e:
            return error_response(409, str(e))

        return session.snapshot()

    @app.post("/api/pay")
    async def pay(data: dict):
        session = session_manager.get_session(data.get("session_id"))
        try:
            details = PaymentDetails.from_dict(data)
            receipt = await session.pay(details)
        except PaymentValidationError as e:
            return error_response(400, str(e))
        except VerificationRequired as e:
            return error_response(409, str(e), remaining=e.remaining)
        except InvalidTransition as e:
            return error_response(409, str(e))

        await manager.broadcast({
            "type": "payment_completed",
            "session_id": session.session_id,
            "receipt_id": receipt.receipt_id,
            "total": receipt.total,
        })

        return receipt.to_dict()

    @app.get("/api/receipt")
    async def get_receipt(session_id: str = None):
        session = session_manager.get_session(session_id)
        if session.receipt is None:
            return error_response(404, "No receipt for this session")
        return session.receipt.to_dict()

    @app.post("/api/reset")
    async def reset_session(data: dict = None):
        session = session_manager.get_session((data or {}).get("session_id"))
        try:
            session.reset()
        except InvalidTransition as e:
            return error_response(409, str(e))

        await manager.broadcast({
            "type": "session_reset",
            "session_id": session.session_id
        })

        return session.snapshot()

    @app.get("/api/system-status")
    async def system_status():
        """Get system status for monitoring"""
        return {
            "status": "online",
            "timestamp": datetime.now().isoformat(),
            "active_connections": len(manager.active_connections),
            "active_sessions": len(session_manager.sessions),
            "catalog_size": len(catalog),
            "insights_available": insights_service.available
        }

    @app.websocket("/ws/scanner")
    async def websocket_scanner(websocket: WebSocket):
        await manager.connect(websocket)
        debouncer = ScanDebouncer(settings.scan_debounce_seconds)
        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    data = json.loads(raw)
                except ValueError:
                    data = None
                if not isinstance(data, dict):
                    logger.warning("Ignoring malformed scanner message")
                    await websocket.send_json({"type": "error", "error": "Expected a JSON object"})
                    continue

                if data.get("type") != "frame":
                    continue

                session = session_manager.get_session(data.get("session_id"))
                frame = decode_data_url(str(data.get("frame", "")))
                codes = decoder.decode(frame) if frame is not None else []

                results = []
                for code in codes:
                    if not debouncer.is_new_scan(code, data.get("mode")):
                        continue
                    product = resolver.resolve_scan(code)
                    if product is None:
                        results.append({"code": code, "error": "Unknown barcode"})
                        continue
                    try:
                        result = await apply_scan(session, product, data.get("mode"))
                    except (InvalidTransition, ValueError) as e:
                        results.append({"code": code, "error": str(e)})
                        continue
                    results.append({"code": code, "product_id": product.id, "changed": result["changed"]})

                await websocket.send_json({
                    "type": "scan_result",
                    "codes": codes,
                    "results": results,
                    "session": session.snapshot()
                })

        except WebSocketDisconnect:
            logger.info("Scanner disconnected")
        finally:
            manager.disconnect(websocket)

    return app


def main():
    """Main application entry point"""
    settings = load_settings()
    setup_logging(settings)
    logger.info("Starting SwiftScan Self-Checkout")

    app = create_app(settings)

    print("\n" + "=" * 60)
    print("SWIFTSCAN SELF-CHECKOUT")
    print("=" * 60)
    print("\nAPI Endpoints:")
    print("   GET  /api/session        - Cart, bag and totals")
    print("   POST /api/scan           - Scan a barcode (cart or bag)")
    print("   POST /api/scan/simulate  - Simulated scan of a product")
    print("   GET  /api/insights       - AI shopping insights")
    print("   POST /api/checkout       - Enter payment (bagging must be complete)")
    print("   POST /api/pay            - Pay and get a receipt")
    print("   POST /api/reset          - Start over")
    print("   WS   /ws/scanner         - Camera frames")
    print("=" * 60 + "\n")

    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
