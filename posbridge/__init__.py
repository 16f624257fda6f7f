"""
                        POS Bridge

Order delivery and print acknowledgment service between an online
ordering platform and restaurant POS terminals (webhook push, pull
polling, Server-Sent Events and WebSocket streaming).

Version: 1.0.0
"""

__version__ = "1.0.0"
