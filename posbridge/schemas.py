"""
Pydantic Schemas for Request/Response Validation

Request bodies keep the field names POS integrators already send
(``tenantId`` on push-order, snake_case elsewhere). Required fields are
declared Optional on purpose: their absence is reported by the service layer
as a 400 with the exact message integrations check for.
"""

from datetime import datetime, timezone
from typing import Optional, List, Any, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class PushOrderRequest(BaseModel):
    """Body of POST /api/pos/push-order."""
    tenantId: Optional[Union[int, str]] = Field(None, examples=[1])
    orderId: Optional[Union[int, str]] = Field(None, examples=[42])
    posWebhookUrl: Optional[str] = Field(
        None,
        max_length=500,
        examples=["http://192.168.1.20:8880/webhook/orders"],
    )


class AckRequest(BaseModel):
    """Body of POST /api/pos/orders/ack."""
    tenant: Optional[str] = Field(None, examples=["kitchen"])
    order_id: Optional[Union[int, str]] = Field(None, examples=[42])
    status: Optional[str] = Field(None, examples=["printed", "failed"])
    printed_at: Optional[datetime] = Field(None, examples=["2025-10-01T18:30:00Z"])
    device_id: Optional[str] = Field(None, max_length=100)
    reason: Optional[str] = Field(None, max_length=2000)

    @field_validator("printed_at")
    @classmethod
    def normalize_printed_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Store acknowledgement times as naive UTC."""
        if v is None or v.tzinfo is None:
            return v
        return v.astimezone(timezone.utc).replace(tzinfo=None)


class DeviceCreateRequest(BaseModel):
    """Body of POST /api/admin/pos-devices."""
    tenant_slug: Optional[str] = Field(None, examples=["kitchen"])
    device_name: Optional[str] = Field(None, max_length=150, examples=["Front Counter"])


class DeviceUpdateRequest(BaseModel):
    """Body of PATCH /api/admin/pos-devices."""
    device_id: Optional[str] = None
    is_active: Optional[bool] = None


class BroadcastRequest(BaseModel):
    """Body of POST /api/admin/broadcast."""
    tenant: Optional[str] = Field(None, examples=["kitchen"])
    event: Optional[dict[str, Any]] = Field(None, examples=[{"type": "menu_updated"}])


class GeneratePosKeyRequest(BaseModel):
    """Body of POST /api/super-admin/tenants/{id}/generate-pos-key."""
    regenerate: bool = False
    description: Optional[str] = Field(None, max_length=500)


class WebhookConfigRequest(BaseModel):
    """Body of POST /api/tenant/{tenant}/pos-webhook."""
    webhook_url: Optional[str] = Field(None, examples=["https://pos.example.com/orders"])
    description: Optional[str] = Field(None, max_length=500)


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class AckOrderSummary(BaseModel):
    order_number: str
    print_status: str
    updated_at: datetime
    device_id: str


class AckResponse(BaseModel):
    """Response after recording a print acknowledgment."""
    success: bool = True
    message: str
    order: AckOrderSummary


class PrintStatusView(BaseModel):
    """Debug view of an order's print-tracking fields."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_number: str
    print_status: str
    print_status_updated_at: Optional[datetime]
    last_pos_device_id: Optional[str]
    last_print_error: Optional[str]
    websocket_sent: bool
    websocket_sent_at: Optional[datetime]


class CreatedDevice(BaseModel):
    """A freshly generated device; the only response carrying the full key."""
    id: int
    device_id: str
    device_name: str
    tenant_name: str
    tenant_slug: str
    api_key: str
    created_at: datetime


class DeviceCreateResponse(BaseModel):
    success: bool = True
    message: str
    device: CreatedDevice


class DeviceView(BaseModel):
    """Listed device; the API key is reduced to a short preview."""
    id: int
    device_id: str
    device_name: str
    is_active: bool
    last_seen_at: Optional[datetime]
    last_heartbeat_at: Optional[datetime]
    created_at: datetime
    api_key_preview: str


class TenantRef(BaseModel):
    id: int
    name: str
    slug: str


class DeviceListResponse(BaseModel):
    success: bool = True
    tenant: TenantRef
    devices: List[DeviceView]
    count: int


class DeviceStatusResponse(BaseModel):
    success: bool = True
    message: str
    device_id: str
    is_active: Optional[bool] = None


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class ConnectionStatusResponse(BaseModel):
    success: bool = True
    tenant: Optional[str]
    connected: bool
    connection_count: int
    connections: List[dict[str, Any]]
    timestamp: datetime


class HealthResponse(BaseModel):
    """Service health check response."""
    status: str
    database: str
    redis: str
    notification_service: str
    live_connections: int
    timestamp: datetime
