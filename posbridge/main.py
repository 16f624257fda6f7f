"""
FastAPI Application Entry Point

POS Bridge - order delivery and print acknowledgment for restaurant POS
terminals.

Endpoints:
    - POST /api/pos/push-order: Push one order to the tenant's POS
    - GET /api/pos/pull-orders: Polling fallback with conditional requests
    - GET /api/pos/stream-orders: Server-Sent Events order stream
    - WS /ws/pos/{tenant}: WebSocket order stream
    - POST/GET /api/pos/orders/ack: Print acknowledgments
    - /api/admin/*: Devices, health, dashboard, live connections, broadcast
    - POST/GET /api/super-admin/tenants/{id}/generate-pos-key: Legacy tenant key
    - GET/POST/DELETE /api/tenant/{tenant}/pos-webhook: Webhook target
    - GET /api/{tenant}/pos-status: POS self-check with recent sync activity
    - GET /health: System health check

Version: 1.0.0
"""

import asyncio
import sys
import logging
from datetime import datetime, timezone
from typing import Any, Optional
from contextlib import asynccontextmanager

import httpx
import redis.asyncio as aioredis
from fastapi import BackgroundTasks, FastAPI, Depends, Query, Request, Header, WebSocket, WebSocketDisconnect, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.requests import HTTPConnection

# Windows-specific event loop policy
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Internal imports
from posbridge.core.config import get_settings, setup_logging
from posbridge.core.exceptions import AuthenticationError, NotFoundError, PosBridgeError, ValidationError
from posbridge.database import get_db, get_session_factory, init_db, engine, utcnow
from posbridge.models import Tenant
from posbridge.schemas import (
    AckRequest,
    AckResponse,
    BroadcastRequest,
    ConnectionStatusResponse,
    CreatedDevice,
    DeviceCreateRequest,
    DeviceCreateResponse,
    DeviceListResponse,
    DeviceStatusResponse,
    DeviceUpdateRequest,
    DeviceView,
    ErrorResponse,
    GeneratePosKeyRequest,
    HealthResponse,
    PushOrderRequest,
    TenantRef,
    WebhookConfigRequest,
)
from posbridge.services.acknowledgments import AcknowledgmentProcessor, parse_id
from posbridge.services.auth import extract_bearer, get_authenticator_chain, verify_admin_token
from posbridge.services.delivery import DeliveryDispatcher, OrderStream, to_iso
from posbridge.services.delivery.payload import EVENT_ORDER_CREATED
from posbridge.services.devices import DeviceRegistry, api_key_preview
from posbridge.services.health import HealthAggregator
from posbridge.services.notifications import BaseNotificationService, get_notification_service
from posbridge.services.realtime import KIND_WEBSOCKET, ConnectionManager, WebSocketTransport
from posbridge.services.realtime.messages import PosMessageHandler, parse_message, welcome_message

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    # Initialize database
    await init_db()
    logger.info("✅ Database initialized")

    # Live connection registry and its sweeper
    app.state.connections = ConnectionManager(
        stale_after=settings.connection_stale_after_seconds,
        sweep_interval=settings.connection_sweep_interval_seconds,
    )
    app.state.connections.start()
    logger.info("✅ Connection manager started")

    # Shared client for webhook delivery
    app.state.http_client = httpx.AsyncClient(timeout=settings.webhook_timeout_seconds)

    notifier = get_notification_service()
    logger.info(f"✅ Notification Service: {notifier.provider_name}")

    # Validate production config
    if settings.use_real_services:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"⚠️ Missing production config: {missing}")

    logger.info("=" * 60)
    logger.info("✅ Application ready!")
    logger.info("=" * 60)

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await app.state.connections.stop()
    await app.state.http_client.aclose()
    await engine.dispose()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Order delivery and print acknowledgment fabric between the online "
        "ordering platform and restaurant POS terminals."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # POS clients connect from arbitrary hosts
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_connections(conn: HTTPConnection) -> ConnectionManager:
    return conn.app.state.connections


def get_http_client(conn: HTTPConnection) -> httpx.AsyncClient:
    return conn.app.state.http_client


def get_notifier() -> BaseNotificationService:
    return get_notification_service()


def require_admin(authorization: Optional[str] = Header(None)) -> None:
    """Admin endpoints need ``Authorization: Bearer <ADMIN_API_TOKEN>``."""
    verify_admin_token(authorization)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def parse_since(value: Optional[str]) -> Optional[datetime]:
    """ISO 8601 timestamp -> naive UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError("Invalid since parameter. Use an ISO 8601 timestamp")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def tenant_ref(tenant: Tenant) -> dict[str, Any]:
    return {"id": tenant.id, "name": tenant.name, "slug": tenant.slug}


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"🖨️ Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    db: AsyncSession = Depends(get_db),
    connections: ConnectionManager = Depends(get_connections),
    notifier: BaseNotificationService = Depends(get_notifier),
) -> HealthResponse:
    """Verify all system components are operational."""

    # Check database
    db_status = "healthy"
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    # Check Redis
    redis_status = "healthy"
    try:
        r = aioredis.from_url(settings.redis_url, socket_timeout=2, socket_connect_timeout=2)
        await r.ping()
        await r.aclose()
    except Exception as e:
        redis_status = f"unhealthy: {str(e)}"
        logger.error(f"Redis health check failed: {e}")

    # Check notification service
    notification_status = "healthy" if await notifier.health_check() else "unhealthy"

    overall = "operational" if all(
        s == "healthy" for s in [db_status, redis_status, notification_status]
    ) else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        redis=redis_status,
        notification_service=notification_status,
        live_connections=connections.connection_count(),
        timestamp=utcnow(),
    )


# =============================================================================
# POS DELIVERY ENDPOINTS
# =============================================================================

@app.post(
    "/api/pos/push-order",
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    tags=["POS Delivery"],
    summary="Push Order to POS",
)
async def push_order(
    body: PushOrderRequest,
    db: AsyncSession = Depends(get_db),
    connections: ConnectionManager = Depends(get_connections),
    http_client: httpx.AsyncClient = Depends(get_http_client),
) -> JSONResponse:
    """
    Deliver a newly placed order to the tenant's POS.

    With a webhook URL (from the body or the tenant) the order is POSTed
    once; on failure the prepared payload comes back as ``orderData``.
    Without one, the order is broadcast to live connections and returned.
    """
    if not body.tenantId or not body.orderId:
        raise ValidationError("Missing tenantId or orderId")

    logger.info(f"🚀 Push order: tenant={body.tenantId} order={body.orderId}")

    tenant_id = parse_id(body.tenantId)
    if tenant_id is None:
        raise NotFoundError("Tenant not found")
    order_id = parse_id(body.orderId)
    if order_id is None:
        raise NotFoundError("Order not found")

    dispatcher = DeliveryDispatcher(db, connections, http_client)
    outcome = await dispatcher.dispatch(tenant_id, order_id, body.posWebhookUrl)

    return JSONResponse(
        status_code=200 if outcome.success else 500,
        content=outcome.to_response(),
    )


@app.get(
    "/api/pos/pull-orders",
    responses={304: {"description": "No new orders"}, 401: {"model": ErrorResponse}},
    tags=["POS Delivery"],
    summary="Pull Orders (Polling)",
)
async def pull_orders(
    request: Request,
    tenant: Optional[str] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    since: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=500),
    authorization: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    connections: ConnectionManager = Depends(get_connections),
    http_client: httpx.AsyncClient = Depends(get_http_client),
) -> Response:
    """
    Polling fallback for POS systems that cannot receive pushes.

    Supports ``If-None-Match`` and ``If-Modified-Since``; an unchanged result
    returns 304 with no body.
    """
    api_key = extract_bearer(authorization)
    if api_key is None:
        raise AuthenticationError("Missing or invalid authorization header")
    if not tenant:
        raise ValidationError("Missing tenant parameter")

    principal = await get_authenticator_chain(db).authenticate(api_key, tenant)
    tenant_row = await DeviceRegistry(db).get_tenant(principal.tenant_id)

    dispatcher = DeliveryDispatcher(db, connections, http_client)
    result = await dispatcher.pull_orders(
        tenant_row,
        status=status_filter,
        since=parse_since(since),
        limit=limit,
    )

    headers = {
        "Last-Modified": result.last_modified_http,
        "ETag": result.etag,
        "Cache-Control": "no-cache, must-revalidate",
    }
    if result.not_modified(
        request.headers.get("if-none-match"),
        request.headers.get("if-modified-since"),
    ):
        return Response(status_code=304, headers=headers)

    return JSONResponse(content=result.to_response(), headers=headers)


@app.get(
    "/api/pos/stream-orders",
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
    tags=["POS Delivery"],
    summary="Stream Orders (Server-Sent Events)",
)
async def stream_orders(
    request: Request,
    tenant: Optional[str] = Query(None),
    api_key_param: Optional[str] = Query(None, alias="apiKey"),
    authorization: Optional[str] = Header(None),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    connections: ConnectionManager = Depends(get_connections),
) -> StreamingResponse:
    """
    Hold the response open and push ``connected``, ``new_order``,
    ``heartbeat`` and ``error`` events as ``data: <json>`` frames.

    Authentication uses its own session, closed before streaming starts;
    the stream opens a short-lived session per poll.
    """
    api_key = api_key_param or extract_bearer(authorization)
    if not tenant or not api_key:
        raise ValidationError("Missing tenant parameter or API key")

    async with session_factory() as db:
        principal = await get_authenticator_chain(db).authenticate(api_key, tenant)
    logger.info(f"📡 SSE stream opened for {principal.tenant_name}")

    stream = OrderStream(session_factory, connections, principal)
    return StreamingResponse(
        stream.events(request.is_disconnected),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@app.websocket("/ws/pos/{tenant}")
async def pos_websocket(
    websocket: WebSocket,
    tenant: str,
    session_factory: async_sessionmaker = Depends(get_session_factory),
    connections: ConnectionManager = Depends(get_connections),
) -> None:
    """
    WebSocket order stream. Authenticate with the ``x-api-key`` header
    (or ``apiKey`` query parameter); send ``{"type": "ping"}`` to keep alive.
    """
    api_key = websocket.headers.get("x-api-key") or websocket.query_params.get("apiKey")

    async with session_factory() as db:
        principal = await get_authenticator_chain(db).resolve(api_key, tenant)

    if principal is None:
        logger.warning(f"WebSocket rejected for tenant {tenant}: invalid API key")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    connection = connections.register(tenant, WebSocketTransport(websocket), KIND_WEBSOCKET)
    handler = PosMessageHandler(session_factory, principal)

    try:
        await websocket.send_json(welcome_message(tenant))
        while True:
            raw = await websocket.receive_text()
            connections.touch(connection.client_id)

            message = parse_message(raw)
            if message is None:
                await websocket.send_json({"type": "error", "message": "Invalid JSON message"})
                continue

            reply = await handler.handle(message)
            if reply is not None:
                await websocket.send_json(reply)
    except WebSocketDisconnect:
        logger.info(f"WebSocket client left: tenant={tenant}")
    finally:
        connections.unregister(connection.client_id)


# =============================================================================
# ACKNOWLEDGMENT ENDPOINTS
# =============================================================================

@app.post(
    "/api/pos/orders/ack",
    response_model=AckResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
    tags=["Acknowledgments"],
    summary="Acknowledge Print Outcome",
)
async def acknowledge_order(
    body: AckRequest,
    background_tasks: BackgroundTasks,
    authorization: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    notifier: BaseNotificationService = Depends(get_notifier),
) -> AckResponse:
    """POS reports whether an order printed or failed. Failure alerts go out after the response."""
    processor = AcknowledgmentProcessor(db, get_authenticator_chain(db), notifier, background_tasks)
    return await processor.acknowledge(
        api_key=extract_bearer(authorization),
        tenant=body.tenant,
        order_id=body.order_id,
        status=body.status,
        printed_at=body.printed_at,
        device_id=body.device_id,
        reason=body.reason,
    )


@app.get(
    "/api/pos/orders/ack",
    tags=["Acknowledgments"],
    summary="Print Status (Debug)",
    dependencies=[Depends(require_admin)],
)
async def get_print_status(
    order_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Current print-tracking fields of one order."""
    processor = AcknowledgmentProcessor(db, get_authenticator_chain(db))
    view = await processor.print_status(order_id)
    return {"success": True, "order": view}


# =============================================================================
# DEVICE ADMIN ENDPOINTS
# =============================================================================

@app.post(
    "/api/admin/pos-devices",
    response_model=DeviceCreateResponse,
    tags=["Devices"],
    summary="Create POS Device",
    dependencies=[Depends(require_admin)],
)
async def create_device(
    body: DeviceCreateRequest,
    db: AsyncSession = Depends(get_db),
) -> DeviceCreateResponse:
    """Register a POS terminal. The API key is returned only in this response."""
    if not body.tenant_slug or not body.device_name:
        raise ValidationError("Missing required fields: tenant_slug, device_name")

    generated = await DeviceRegistry(db).generate_device(body.tenant_slug, body.device_name)
    device = generated.device

    return DeviceCreateResponse(
        success=True,
        message="⚠️ IMPORTANT: Save this API key - it cannot be retrieved later!",
        device=CreatedDevice(
            id=device.id,
            device_id=device.device_id,
            device_name=device.device_name,
            tenant_name=generated.tenant.name,
            tenant_slug=generated.tenant.slug,
            api_key=generated.api_key,
            created_at=device.created_at,
        ),
    )


@app.get(
    "/api/admin/pos-devices",
    response_model=DeviceListResponse,
    tags=["Devices"],
    summary="List POS Devices",
    dependencies=[Depends(require_admin)],
)
async def list_devices(
    tenant: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> DeviceListResponse:
    """List a tenant's devices with only a short key preview."""
    if not tenant:
        raise ValidationError("Missing tenant parameter")

    tenant_row, devices = await DeviceRegistry(db).list_devices(tenant)

    return DeviceListResponse(
        tenant=TenantRef(id=tenant_row.id, name=tenant_row.name, slug=tenant_row.slug),
        devices=[
            DeviceView(
                id=device.id,
                device_id=device.device_id,
                device_name=device.device_name,
                is_active=device.is_active,
                last_seen_at=device.last_seen_at,
                last_heartbeat_at=device.last_heartbeat_at,
                created_at=device.created_at,
                api_key_preview=api_key_preview(device.api_key),
            )
            for device in devices
        ],
        count=len(devices),
    )


@app.patch(
    "/api/admin/pos-devices",
    response_model=DeviceStatusResponse,
    tags=["Devices"],
    summary="Activate / Deactivate Device",
    dependencies=[Depends(require_admin)],
)
async def update_device(
    body: DeviceUpdateRequest,
    db: AsyncSession = Depends(get_db),
) -> DeviceStatusResponse:
    if not body.device_id or body.is_active is None:
        raise ValidationError("Missing required fields: device_id, is_active")

    await DeviceRegistry(db).set_active(body.device_id, body.is_active)
    return DeviceStatusResponse(
        message=f"Device {'activated' if body.is_active else 'deactivated'} successfully",
        device_id=body.device_id,
        is_active=body.is_active,
    )


@app.delete(
    "/api/admin/pos-devices",
    response_model=DeviceStatusResponse,
    tags=["Devices"],
    summary="Deactivate Device (Soft Delete)",
    dependencies=[Depends(require_admin)],
)
async def delete_device(
    device_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> DeviceStatusResponse:
    """Devices are never removed; the key simply stops working."""
    if not device_id:
        raise ValidationError("Missing device_id parameter")

    await DeviceRegistry(db).deactivate(device_id)
    return DeviceStatusResponse(
        message="Device deactivated successfully",
        device_id=device_id,
        is_active=False,
    )


# =============================================================================
# LEGACY TENANT KEY ENDPOINTS
# =============================================================================

@app.post(
    "/api/super-admin/tenants/{tenant_id}/generate-pos-key",
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    tags=["Tenant Keys"],
    summary="Generate Tenant POS Key",
    dependencies=[Depends(require_admin)],
)
async def generate_pos_key(
    tenant_id: int,
    body: Optional[GeneratePosKeyRequest] = None,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Create the tenant-wide key; replacing one requires ``regenerate``."""
    body = body or GeneratePosKeyRequest()
    tenant, api_key = await DeviceRegistry(db).issue_tenant_key(
        tenant_id,
        regenerate=body.regenerate,
        description=body.description,
    )

    return {
        "success": True,
        "message": (
            "POS API key regenerated successfully" if body.regenerate
            else "POS API key generated successfully"
        ),
        "data": {
            "tenant": {"id": tenant.id, "name": tenant.name, "slug": tenant.slug},
            "api_key": api_key,
            "generated_at": to_iso(utcnow()),
            "action": "regenerated" if body.regenerate else "created",
        },
        "warning": "Store this API key securely. It will not be shown again in full.",
    }


@app.get(
    "/api/super-admin/tenants/{tenant_id}/generate-pos-key",
    tags=["Tenant Keys"],
    summary="Tenant POS Key Status",
    dependencies=[Depends(require_admin)],
)
async def pos_key_status(
    tenant_id: int,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    tenant = await DeviceRegistry(db).get_tenant(tenant_id)
    key = tenant.pos_api_key
    return {
        "success": True,
        "data": {
            "tenant": {"id": tenant.id, "name": tenant.name, "slug": tenant.slug},
            "has_api_key": bool(key),
            "api_key_preview": f"{key[:8]}...{key[-4:]}" if key else None,
        },
    }


# =============================================================================
# TENANT WEBHOOK CONFIGURATION
# =============================================================================

@app.get(
    "/api/tenant/{tenant}/pos-webhook",
    responses={404: {"model": ErrorResponse}},
    tags=["Tenant Webhook"],
    summary="POS Integration Settings",
    dependencies=[Depends(require_admin)],
)
async def get_pos_webhook(
    tenant: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Webhook target, key status and the endpoints a POS integrates with."""
    row = await DeviceRegistry(db).get_tenant_by_slug(tenant)
    key = row.pos_api_key

    return {
        "success": True,
        "data": {
            "tenant": tenant_ref(row),
            "has_api_key": bool(key),
            "api_key_preview": f"{key[:10]}..." if key else None,
            "webhook_url": row.pos_webhook_url,
            "webhook_configured": bool(row.pos_webhook_url),
            "push_api_url": str(request.url_for("push_order")),
            "pull_api_url": f"{request.url_for('pull_orders')}?tenant={row.slug}",
            "integration_status": "configured" if key else "not_configured",
        },
    }


@app.post(
    "/api/tenant/{tenant}/pos-webhook",
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    tags=["Tenant Webhook"],
    summary="Set POS Webhook URL",
    dependencies=[Depends(require_admin)],
)
async def set_pos_webhook(
    tenant: str,
    body: WebhookConfigRequest,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Orders for this tenant are POSTed to ``webhook_url`` from now on."""
    if not body.webhook_url:
        raise ValidationError("Webhook URL is required")

    row = await DeviceRegistry(db).set_webhook_url(tenant, body.webhook_url)
    now = to_iso(utcnow())

    return {
        "success": True,
        "message": "POS webhook URL configured successfully",
        "data": {
            "tenant": tenant_ref(row),
            "webhook_url": row.pos_webhook_url,
            "configured_at": now,
            "description": body.description or "POS webhook endpoint",
            "test_payload": {
                "order": {
                    "id": 0,
                    "orderNumber": "ORD-123456-ABCD",
                    "customerName": "Test Customer",
                    "total": 25.99,
                    "status": "confirmed",
                    "items": [],
                },
                "tenant": tenant_ref(row),
                "timestamp": now,
                "event": EVENT_ORDER_CREATED,
            },
        },
    }


@app.delete(
    "/api/tenant/{tenant}/pos-webhook",
    responses={404: {"model": ErrorResponse}},
    tags=["Tenant Webhook"],
    summary="Remove POS Webhook URL",
    dependencies=[Depends(require_admin)],
)
async def delete_pos_webhook(
    tenant: str,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Without a webhook, new orders are broadcast to live connections."""
    row = await DeviceRegistry(db).set_webhook_url(tenant, None)
    return {
        "success": True,
        "message": "POS webhook URL removed successfully",
        "data": {
            "tenant": tenant_ref(row),
            "webhook_removed_at": to_iso(utcnow()),
        },
    }


# =============================================================================
# MONITORING ENDPOINTS
# =============================================================================

@app.get(
    "/api/{tenant}/pos-status",
    responses={401: {"model": ErrorResponse}},
    tags=["Monitoring"],
    summary="POS Integration Status",
)
async def pos_status(
    tenant: str,
    request: Request,
    x_api_key: Optional[str] = Header(None),
    authorization: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    connections: ConnectionManager = Depends(get_connections),
) -> dict[str, Any]:
    """
    Self-check for a POS terminal: live connections of its tenant and the
    tenant's recent sync log activity. Authenticate with ``X-API-Key``
    (or a bearer token).
    """
    api_key = x_api_key or extract_bearer(authorization)
    if not api_key:
        raise AuthenticationError("Missing X-API-Key header")

    principal = await get_authenticator_chain(db).authenticate(api_key, tenant)
    activity = await HealthAggregator(db).sync_activity(principal.tenant_id)

    ws_url = request.url_for("pos_websocket", tenant=tenant)
    ws_url = ws_url.replace(scheme="wss" if ws_url.scheme == "https" else "ws")
    count = connections.connection_count(tenant)

    return {
        "success": True,
        "tenant": tenant,
        "websocket": {
            "connected": count,
            "active": count,
            "url": str(ws_url),
        },
        "events24h": activity["events24h"],
        "recentEvents": activity["recentEvents"],
        "timestamp": to_iso(utcnow()),
    }


@app.get(
    "/api/admin/pos-health",
    tags=["Monitoring"],
    summary="POS Health Report",
    dependencies=[Depends(require_admin)],
)
async def pos_health(
    tenant: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Device statuses, unprinted/failed orders and alerts."""
    return await HealthAggregator(db).compute_health(tenant)


@app.get(
    "/api/admin/dashboard/stats",
    tags=["Monitoring"],
    summary="Dashboard Statistics",
    dependencies=[Depends(require_admin)],
)
async def dashboard_stats(
    tenant: Optional[str] = Query(None),
    period: str = Query("24h"),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return await HealthAggregator(db).dashboard_stats(tenant, period)


@app.get(
    "/api/pos/connections",
    response_model=ConnectionStatusResponse,
    tags=["Monitoring"],
    summary="Live Connections",
    dependencies=[Depends(require_admin)],
)
async def connection_status(
    tenant: Optional[str] = Query(None),
    connections: ConnectionManager = Depends(get_connections),
) -> ConnectionStatusResponse:
    """Live WebSocket/SSE sessions in this process."""
    count = connections.connection_count(tenant)
    return ConnectionStatusResponse(
        tenant=tenant,
        connected=count > 0,
        connection_count=count,
        connections=connections.describe(tenant),
        timestamp=utcnow(),
    )


@app.post(
    "/api/admin/broadcast",
    tags=["Monitoring"],
    summary="Broadcast Event to Tenant",
    dependencies=[Depends(require_admin)],
)
async def broadcast_event(
    body: BroadcastRequest,
    connections: ConnectionManager = Depends(get_connections),
) -> dict[str, Any]:
    """Send an arbitrary event to every live connection of a tenant."""
    if not body.tenant or not body.event:
        raise ValidationError("Missing tenant or event")

    result = await connections.broadcast(body.tenant, body.event)
    logger.info(f"[Broadcast] Event \"{body.event.get('type')}\" sent to tenant: {body.tenant}")
    return {
        "success": True,
        "message": f"Event broadcasted to {body.tenant}",
        "delivered": result.delivered,
        "failed": len(result.failed),
    }


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(PosBridgeError)
async def pos_bridge_exception_handler(request: Request, exc: PosBridgeError) -> JSONResponse:
    """Domain errors carry their own status code and response fields."""
    if exc.status_code >= 500:
        logger.error(f"{exc.__class__.__name__} on {request.url.path}: {exc}")
    else:
        logger.warning(f"{exc.status_code} on {request.url.path}: {exc.message}")

    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning(f"Invalid request on {request.url.path}: {exc.errors()}")

    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "Invalid request",
            "detail": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception(f"Database error on {request.url.path}: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Database error",
            "detail": str(exc) if settings.debug else None,
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )

