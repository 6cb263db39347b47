"""
Relay Gateway - WebSocket relay between arm control clients and the board.

This module runs on the relay host and:
- Accepts WebSocket sessions from control clients
- Acknowledges pose/command payloads and heartbeats
- Evicts sessions that go silent
- Optionally forwards commands to the board over MQTT
"""

__version__ = "1.0.0"
