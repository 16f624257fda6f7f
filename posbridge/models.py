"""
SQLAlchemy Database Models

Rows shared with the ordering platform:
- Tenants (restaurant accounts) and their legacy POS key / webhook URL
- Orders and order items, plus the print-tracking columns this service owns
- POS devices (per-device API keys, liveness timestamps)
- POS sync logs (append-only acknowledgment audit trail)
"""

import enum

from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    DateTime,
    Text,
    Enum,
    Boolean,
    ForeignKey,
)
from sqlalchemy.orm import relationship

from posbridge.database import Base, utcnow


def _values(enum_cls):
    return [member.value for member in enum_cls]


def _enum_type(enum_cls, length: int = 30) -> Enum:
    """Store enum values (not names) in a portable VARCHAR column."""
    return Enum(
        enum_cls,
        values_callable=_values,
        native_enum=False,
        length=length,
        validate_strings=True,
    )


class OrderStatus(str, enum.Enum):
    """Order lifecycle as written by the ordering platform."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PrintStatus(str, enum.Enum):
    """
    Print tracking for POS delivery.

    pending -> sent_to_pos -> printed | failed. Forward progress is expected
    but not enforced; a later acknowledgment overwrites an earlier one.
    """
    PENDING = "pending"
    SENT_TO_POS = "sent_to_pos"
    PRINTED = "printed"
    FAILED = "failed"


class SyncLogStatus(str, enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"
    RECEIVED = "received"


class Tenant(Base):
    """A restaurant account; the unit of data isolation."""
    __tablename__ = "tenants"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(150), nullable=False)
    slug = Column(String(100), nullable=False, unique=True, index=True)

    # Legacy tenant-wide POS key, kept for pre-device integrations
    pos_api_key = Column(String(100), nullable=True, unique=True)
    pos_webhook_url = Column(String(500), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    devices = relationship("PosDevice", back_populates="tenant")

    def __repr__(self):
        return f"<Tenant {self.slug}>"


class Order(Base):
    """
    Online order row.

    Created by the ordering flow; this service only mutates the print
    tracking and broadcast columns.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    order_number = Column(String(50), nullable=False, index=True)

    # =========================================================================
    # CUSTOMER
    # =========================================================================
    customer_name = Column(String(100), nullable=True)
    customer_email = Column(String(255), nullable=True)
    customer_phone = Column(String(30), nullable=True)

    # =========================================================================
    # PRICING
    # =========================================================================
    subtotal = Column(Float, nullable=False, default=0.0)
    delivery_fee = Column(Float, nullable=False, default=0.0)
    tax = Column(Float, nullable=False, default=0.0)
    total = Column(Float, nullable=False, default=0.0)

    # =========================================================================
    # ORDER DETAILS
    # =========================================================================
    status = Column(
        _enum_type(OrderStatus),
        default=OrderStatus.CONFIRMED,
        nullable=False,
        index=True
    )
    order_type = Column(String(20), nullable=True, default="delivery")
    order_source = Column(String(20), nullable=False, default="online")
    payment_method = Column(String(50), nullable=True)
    address = Column(String(500), nullable=True)
    special_instructions = Column(Text, nullable=True)
    scheduled_time = Column(DateTime, nullable=True)

    # =========================================================================
    # PRINT TRACKING
    # =========================================================================
    print_status = Column(
        _enum_type(PrintStatus),
        default=PrintStatus.PENDING,
        nullable=False,
        index=True
    )
    print_status_updated_at = Column(DateTime, nullable=True)
    last_pos_device_id = Column(String(100), nullable=True, index=True)
    last_print_error = Column(Text, nullable=True)

    # =========================================================================
    # BROADCAST TRACKING ("sent" says nothing about "printed")
    # =========================================================================
    websocket_sent = Column(Boolean, default=False, nullable=False)
    websocket_sent_at = Column(DateTime, nullable=True)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    items = relationship(
        "OrderItem",
        back_populates="order",
        order_by="OrderItem.id",
    )

    def __repr__(self):
        return f"<Order #{self.order_number} - {self.print_status.value}>"


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    menu_item_id = Column(Integer, nullable=True)
    name = Column(String(150), nullable=False)
    price = Column(Float, nullable=False, default=0.0)
    quantity = Column(Integer, nullable=False, default=1)
    selected_addons = Column(Text, nullable=True)  # JSON string
    special_instructions = Column(Text, nullable=True)

    order = relationship("Order", back_populates="items")


class PosDevice(Base):
    """
    A POS terminal with its own API key.

    Never hard-deleted; ``is_active`` is cleared instead.
    """
    __tablename__ = "pos_devices"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    device_id = Column(String(100), nullable=False, unique=True, index=True)
    device_name = Column(String(150), nullable=False)
    api_key = Column(String(100), nullable=False, unique=True, index=True)
    is_active = Column(Boolean, default=True, nullable=False)

    last_seen_at = Column(DateTime, nullable=True)
    last_heartbeat_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    tenant = relationship("Tenant", back_populates="devices")

    def __repr__(self):
        return f"<PosDevice {self.device_id} active={self.is_active}>"


class PosSyncLog(Base):
    """Append-only audit record; only the retention sweep deletes rows."""
    __tablename__ = "pos_sync_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=True, index=True)
    event_type = Column(String(100), nullable=False, index=True)
    event_data = Column(Text, nullable=True)  # JSON string
    status = Column(_enum_type(SyncLogStatus, length=20), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<PosSyncLog {self.event_type} - {self.status.value}>"
