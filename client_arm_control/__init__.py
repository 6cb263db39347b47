"""
Client Arm Control - Hand landmark to robot arm command client.

This module runs next to the camera, derives a hand pose and a grab gesture
from MediaPipe hand landmarks, maps them to bounded servo angles and streams
them to the arm's controller board (or to a relay gateway) over WebSocket.
"""

__version__ = "1.0.0"
