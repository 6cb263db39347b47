#!/usr/bin/env python3
"""
Hand Tracking Robot Arm Client - Main Entry Point

This client runs next to the camera, tracks one hand with MediaPipe and
streams servo commands to the arm's controller board (or to the relay
gateway) over WebSocket.

Usage:
    python -m client_arm_control.main --host 192.168.1.100 --port 8080 --rate 10
    python -m client_arm_control.main --host relay.local --port 8000 --path /ws --heartbeat 10
"""

import argparse
import asyncio
import logging
import signal
import sys
import time
from typing import Any, Optional

import cv2
import mediapipe as mp

from .hand_control import (
    NO_GESTURE,
    Gesture,
    HandPose,
    as_landmarks,
    classify_gesture,
    extract_first_hand,
    extract_hand_pose,
    map_to_command,
)
from .ws_client import (
    MAX_UPDATE_HZ,
    MIN_UPDATE_HZ,
    ConfigurationError,
    ConnectionConfig,
    StreamingTransportClient,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# MediaPipe setup
mp_hands = mp.solutions.hands
mp_draw = mp.solutions.drawing_utils


class ArmControlClient:
    """
    Main client that integrates all components:
    - Camera capture
    - MediaPipe hand detection
    - Pose, gesture and command mapping
    - WebSocket streaming
    """

    def __init__(
        self,
        config: ConnectionConfig,
        camera_index: int = 0,
        confidence_threshold: float = 0.7,
        heartbeat_interval: Optional[float] = None,
        show_preview: bool = False,
    ):
        """
        Initialize the arm control client.

        Args:
            config: Connection target and cadence
            camera_index: Camera device index
            confidence_threshold: MediaPipe minimum detection confidence
            heartbeat_interval: Relay heartbeat period in seconds (None = off)
            show_preview: Whether to show OpenCV preview window
        """
        self.camera_index = camera_index
        self.confidence_threshold = confidence_threshold
        self.show_preview = show_preview

        self.transport = StreamingTransportClient(
            config,
            heartbeat_interval=heartbeat_interval,
            on_connected=self._on_connected,
            on_disconnected=self._on_disconnected,
            on_error=self._on_error,
        )

        self.cap: Optional[cv2.VideoCapture] = None
        self.hands: Optional[mp_hands.Hands] = None

        # Latest frame results, read by the streaming source
        self.pose: Optional[HandPose] = None
        self.gesture: Gesture = NO_GESTURE
        self._running = False
        self._frames = 0

        # UI font
        self.font = cv2.FONT_HERSHEY_SIMPLEX

    def current_command(self) -> Any:
        """Streaming source: command (or NO_HAND) for the latest frame."""
        return map_to_command(self.pose, self.gesture)

    async def start(self) -> None:
        """Start capture, detection and the transport."""
        logger.info("Starting Arm Control Client...")

        if not self._init_camera():
            raise RuntimeError("Failed to initialize camera")

        self.hands = mp_hands.Hands(
            static_image_mode=False,
            max_num_hands=1,
            model_complexity=1,
            min_detection_confidence=self.confidence_threshold,
            min_tracking_confidence=0.5,
        )

        try:
            await self.transport.connect()
        except Exception as e:
            # The transport keeps retrying in the background
            logger.warning(f"Initial connection failed: {e}")

        self.transport.start_streaming(self.current_command)
        self._running = True
        logger.info("Arm Control Client started")

    async def stop(self) -> None:
        """Stop the client and clean up resources."""
        logger.info("Stopping Arm Control Client...")
        self._running = False

        await self.transport.disconnect()

        if self.cap:
            self.cap.release()
            self.cap = None

        if self.hands:
            self.hands.close()
            self.hands = None

        if self.show_preview:
            cv2.destroyAllWindows()

        logger.info("Arm Control Client stopped")

    async def run(self) -> None:
        """Capture loop; streaming runs on its own timer."""
        while self._running:
            try:
                self._process_frame()
            except Exception as e:
                logger.error(f"Error in capture loop: {e}")

            if self.show_preview:
                key = cv2.waitKey(1) & 0xFF
                if key in (27, ord('q')):
                    logger.info("Quit requested")
                    self._running = False

            # Yield to the event loop so pushes and reconnects can run
            await asyncio.sleep(0)

    def _process_frame(self) -> None:
        ok, frame = self.cap.read()
        if not ok or frame is None:
            logger.debug("Frame read failed")
            return

        frame = cv2.flip(frame, 1)
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        results = self.hands.process(rgb)

        hand = extract_first_hand(results)
        landmarks = as_landmarks(hand)
        self.pose = extract_hand_pose(landmarks)
        self.gesture = classify_gesture(landmarks)
        self._frames += 1

        if self.show_preview:
            self._draw_preview(frame, hand)
            cv2.imshow("Hand Tracking Robot Arm", frame)

    def _init_camera(self) -> bool:
        """Initialize video capture."""
        logger.info(f"Opening camera index: {self.camera_index}")
        self.cap = cv2.VideoCapture(self.camera_index)
        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, 640)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, 480)

        if not self.cap.isOpened():
            logger.error("Failed to open camera source")
            return False

        width = int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        height = int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        fps = self.cap.get(cv2.CAP_PROP_FPS)
        logger.info(f"Camera opened: {width}x{height} @ {fps:.1f} fps")
        return True

    def _on_connected(self) -> None:
        logger.info("Connected to arm controller")

    def _on_disconnected(self) -> None:
        logger.warning("Disconnected from arm controller")

    def _on_error(self, error: Exception) -> None:
        logger.warning(f"Connection error: {error}")

    def _draw_preview(self, frame, hand) -> None:
        """Draw landmarks, gesture, command and link status."""
        h = frame.shape[0]
        if hand is not None:
            mp_draw.draw_landmarks(frame, hand, mp_hands.HAND_CONNECTIONS)

        conn_status = "Connected" if self.transport.connected else "Disconnected"
        conn_color = (0, 255, 0) if self.transport.connected else (0, 0, 255)
        cv2.putText(frame, f"Arm: {conn_status}", (20, 30), self.font, 0.6, conn_color, 2)

        cv2.putText(
            frame,
            f"Gesture: {self.gesture.name.value} ({self.gesture.confidence:.1f})",
            (20, 60),
            self.font, 0.6, (255, 255, 0), 2
        )

        command = self.current_command()
        cv2.putText(frame, command.to_text().replace("\n", "  "), (20, h - 20),
                    self.font, 0.45, (255, 0, 0), 1)


async def main_async(args: argparse.Namespace) -> None:
    """Async main entry point."""
    config = ConnectionConfig(
        host=args.host,
        port=args.port,
        update_frequency_hz=args.rate,
        compression_enabled=args.compression,
        path=args.path,
        output_format=args.format,
    )
    client = ArmControlClient(
        config,
        camera_index=args.camera,
        confidence_threshold=args.confidence,
        heartbeat_interval=args.heartbeat,
        show_preview=args.preview,
    )

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Shutdown signal received")
        client._running = False

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    started = time.monotonic()
    try:
        await client.start()
        await client.run()
    except Exception as e:
        logger.error(f"Client error: {e}")
    finally:
        await client.stop()
        logger.info(
            f"Processed {client._frames} frames in {time.monotonic() - started:.1f}s, "
            f"stats: {client.transport.get_stats()}"
        )


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Hand Tracking Robot Arm Client",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument("--host", type=str, default="192.168.1.100",
                        help="Arm controller or relay host")
    parser.add_argument("--port", type=int, default=8080, help="WebSocket port")
    parser.add_argument("--path", type=str, default="",
                        help="WebSocket path ('/ws' for the relay gateway)")
    parser.add_argument("--rate", type=float, default=10.0,
                        help=f"Update frequency in Hz ({MIN_UPDATE_HZ}-{MAX_UPDATE_HZ})")
    parser.add_argument("--compression", action="store_true",
                        help="Enable permessage-deflate compression")
    parser.add_argument("--format", choices=("json", "csv"), default="json",
                        help="Command encoding")
    parser.add_argument("--camera", type=int, default=0, help="Camera device index")
    parser.add_argument("--confidence", type=float, default=0.7,
                        help="Minimum hand detection confidence")
    parser.add_argument("--heartbeat", type=float, default=None,
                        help="Relay heartbeat interval in seconds")
    parser.add_argument("--preview", action="store_true", help="Show preview window")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    args = parser.parse_args()

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        asyncio.run(main_async(args))
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)


if __name__ == "__main__":
    main()
