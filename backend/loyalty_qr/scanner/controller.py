# Overview: Staff-side QR scanner state machine; owns the camera and drives verification.

"""
QR Scanner Controller

STATES:
    INITIALIZING -> SCANNING <-> PROCESSING -> SUCCESS
                                            -> SCANNING (rejected, resumes)
    ERROR from any state (camera problems; fatal for the session)
    CLOSED after release()/close()

CAMERA OWNERSHIP: The controller holds one camera for its whole life and
gives it back on every exit path: start failure, close(), release(), or
leaving a `with` block, whatever state it was in.

CALLBACKS:
- on_scan_success(customer_id, restaurant_id, payload) fires exactly once per
  successful session, success_delay seconds after SUCCESS is entered.
- on_close() fires only from close(), never on its own after a success.
- on_state_change(state, message), if given, sees every transition.

CLOSING MID-VERIFICATION: the in-flight verification always runs to the end
(the token may be consumed), and its outcome is discarded.
"""

from __future__ import annotations

import enum
import logging
import threading

from .camera import Camera, CameraDevice, CameraError, OpenCVDecoder, QRDecoder
from .config import ScanConfig
from .decode_loop import DecodeLoop
from ..services.scan_rules import MODE_CUSTOMER, check_scan_context, validate_mode


logger = logging.getLogger(__name__)


ERR_NO_CAMERAS = "No cameras found on this device."
ERR_CAMERA_ACCESS = "Camera access denied or failed to enumerate devices. Please check permissions."
ERR_CAMERA_START = "Failed to start camera. Please ensure permissions are granted."
ERR_UNEXPECTED = "An unexpected error occurred while processing the QR code."

MSG_PROCESSING = "Processing QR code..."
MSG_SUCCESS = "QR code scanned successfully! Redirecting..."


class ScannerState(str, enum.Enum):
    INITIALIZING = "initializing"
    SCANNING = "scanning"
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"
    CLOSED = "closed"


class QRScanner:
    def __init__(
        self,
        restaurant_id: str,
        on_scan_success,
        on_close,
        *,
        verifier,
        camera: Camera,
        decoder: QRDecoder | None = None,
        mode: str = MODE_CUSTOMER,
        config: ScanConfig | None = None,
        on_state_change=None,
    ):
        self.restaurant_id = restaurant_id
        self.mode = validate_mode(mode)
        self.config = config or ScanConfig()

        self._on_scan_success = on_scan_success
        self._on_close = on_close
        self._on_state_change = on_state_change
        self._verifier = verifier
        self._camera = camera
        self._decoder = decoder or OpenCVDecoder(self.config)

        self._lock = threading.RLock()
        self._camera_lock = threading.Lock()
        self._state = ScannerState.INITIALIZING
        self._error = ""
        self._device: CameraDevice | None = None
        self._loop: DecodeLoop | None = None
        self._success_timer: threading.Timer | None = None
        self._success_args: tuple | None = None
        self._success_delivered = False

    # ------------------------------------------------------------------
    # Public state
    # ------------------------------------------------------------------

    @property
    def state(self) -> ScannerState:
        return self._state

    @property
    def error(self) -> str:
        """Last message shown to staff; empty when there is none."""
        return self._error

    @property
    def device(self) -> CameraDevice | None:
        return self._device

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> ScannerState:
        """
        Acquire a camera and begin scanning.

        Camera failures put the scanner in ERROR and leave no camera open.
        """
        with self._lock:
            if self._state is not ScannerState.INITIALIZING:
                raise RuntimeError(f"Scanner cannot start from state {self._state.value}")
            self._notify(ScannerState.INITIALIZING, "")

        try:
            devices = self._camera.list_devices()
        except Exception:
            logger.exception("Camera enumeration failed")
            self._fail(ERR_CAMERA_ACCESS)
            return self._state

        if not devices:
            self._fail(ERR_NO_CAMERAS)
            return self._state

        device = self._pick_device(devices)
        try:
            with self._camera_lock:
                self._camera.start(device, self.config)
        except Exception as exc:
            logger.exception("Camera initialization error")
            message = str(exc) if isinstance(exc, CameraError) and str(exc) else ERR_CAMERA_START
            self._fail(message)
            return self._state

        with self._lock:
            if self._state is ScannerState.CLOSED:
                # released while the camera was starting
                self._stop_camera()
                return self._state
            self._device = device
            self._error = ""
            self._set_state(ScannerState.SCANNING, "")
            self._loop = DecodeLoop(self._tick, self.config.frame_interval)
            self._loop.start()

        logger.info("Scanner started restaurant=%s mode=%s device=%s", self.restaurant_id, self.mode, device.label)
        return self._state

    def release(self) -> None:
        """
        Give the camera back and stop all background work. Idempotent.

        A success that is still waiting out its display delay is delivered
        now rather than dropped; the token behind it is already spent.
        """
        with self._lock:
            if self._state is ScannerState.CLOSED:
                return
            in_flight = self._state is ScannerState.PROCESSING
            self._set_state(ScannerState.CLOSED, "")
            loop, self._loop = self._loop, None
            timer, self._success_timer = self._success_timer, None

        if loop is not None:
            loop.stop(wait=not in_flight)
        self._stop_camera()

        if timer is not None:
            timer.cancel()
            self._deliver_success()

        if in_flight:
            logger.info("Scanner released during verification; result will be discarded")

    def close(self) -> None:
        """Host or user dismissal: release everything, then call on_close."""
        self.release()
        self._on_close()

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def handle_decoded(self, decoded_text: str) -> bool:
        """
        Verify one decoded QR string.

        Ignored unless the scanner is SCANNING. Returns True when the scan
        was accepted.
        """
        with self._lock:
            if self._state is not ScannerState.SCANNING:
                return False
            self._error = ""
            self._set_state(ScannerState.PROCESSING, MSG_PROCESSING)

        self._pause_feed()

        result = None
        success_args = None
        try:
            result = self._verifier(decoded_text)
            error = check_scan_context(result, self.restaurant_id, self.mode)
            if not error:
                payload = result.payload
                success_args = (payload["customerId"], payload["restaurantId"], payload)
        except Exception:
            logger.exception("Error processing QR")
            error = ERR_UNEXPECTED

        with self._lock:
            if self._state is not ScannerState.PROCESSING:
                logger.info(
                    "Discarding verification outcome (valid=%s) after scanner left processing",
                    bool(result and result.valid),
                )
                return False

            if error:
                self._error = error
                self._set_state(ScannerState.SCANNING, error)
                self._resume_feed()
                return False

            self._success_args = success_args
            self._set_state(ScannerState.SUCCESS, MSG_SUCCESS)
            self._stop_loop_later()
            self._success_timer = threading.Timer(self.config.success_delay, self._on_success_timer)
            self._success_timer.daemon = True
            self._success_timer.start()

        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _pick_device(self, devices: list[CameraDevice]) -> CameraDevice:
        for device in devices:
            if device.facing_mode == self.config.facing_mode:
                return device
        return devices[0]

    def _tick(self) -> None:
        with self._camera_lock:
            if self._state is not ScannerState.SCANNING or not self._camera.is_running:
                return
            frame = self._camera.read()
        if frame is None:
            return
        decoded = self._decoder.decode(frame)
        if decoded:
            self.handle_decoded(decoded)

    def _pause_feed(self) -> None:
        loop = self._loop
        if loop is not None:
            loop.pause()
        with self._camera_lock:
            if self._camera.is_running:
                self._camera.pause()

    def _resume_feed(self) -> None:
        with self._camera_lock:
            if self._camera.is_running:
                self._camera.resume()
        loop = self._loop
        if loop is not None:
            loop.resume()

    def _stop_loop_later(self) -> None:
        # Called from the loop thread itself on success; stop() must not join.
        loop = self._loop
        if loop is not None:
            loop.stop(wait=False)

    def _stop_camera(self) -> None:
        with self._camera_lock:
            try:
                self._camera.stop()
            except Exception:
                logger.warning("Scanner stop error", exc_info=True)

    def _fail(self, message: str) -> None:
        with self._lock:
            if self._state is ScannerState.CLOSED:
                return
            self._error = message
            self._set_state(ScannerState.ERROR, message)
        self._stop_camera()

    def _on_success_timer(self) -> None:
        with self._lock:
            if self._success_timer is None:
                return
            self._success_timer = None
        self._deliver_success()

    def _deliver_success(self) -> None:
        with self._lock:
            if self._success_delivered or self._success_args is None:
                return
            self._success_delivered = True
            customer_id, restaurant_id, payload = self._success_args
        self._on_scan_success(customer_id, restaurant_id, payload)

    def _set_state(self, state: ScannerState, message: str) -> None:
        self._state = state
        self._notify(state, message)

    def _notify(self, state: ScannerState, message: str) -> None:
        if self._on_state_change is None:
            return
        try:
            self._on_state_change(state, message)
        except Exception:
            logger.exception("State change listener failed")
