"""
                        Services Module

Business logic behind the POS endpoints. External providers follow the
hybrid pattern: a Mock (development) and a Real (production) implementation
behind one interface.

Services:
    - devices: POS device registry and API keys
    - auth: device-key and legacy tenant-key authentication
    - realtime: live WebSocket/SSE connection registry
    - delivery: webhook push, broadcast, pull and SSE order delivery
    - acknowledgments: print acknowledgments and the sync audit log
    - health: device liveness and print alerting
    - notifications: SendGrid/Twilio print-failure alerts
"""
