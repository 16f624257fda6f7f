"""
POS device registry: identities, API keys and heartbeats.
"""

from posbridge.services.devices.registry import (
    DeviceRegistry,
    GeneratedDevice,
    api_key_preview,
    generate_api_key,
    generate_device_id,
)
from posbridge.services.devices.heartbeat import DeviceHeartbeat

__all__ = [
    "DeviceHeartbeat",
    "DeviceRegistry",
    "GeneratedDevice",
    "api_key_preview",
    "generate_api_key",
    "generate_device_id",
]
