"""
Scanner Controller Tests

Drives QRScanner with an in-memory camera and decoder so every state
transition can be checked without hardware.

Test Coverage:
- Camera acquisition failures and device preference
- Accept / reject / unexpected-error paths of one decoded scan
- Exactly one on_scan_success per session
- Camera released on every exit path
- Closing mid-verification discards the outcome
"""

import queue
import threading
import time

import pytest

from loyalty_qr.models import QRToken
from loyalty_qr.scanner import Camera, CameraDevice, CameraError, QRDecoder, QRScanner, ScanConfig, ScannerState
from loyalty_qr.scanner.controller import (
    ERR_CAMERA_ACCESS,
    ERR_CAMERA_START,
    ERR_NO_CAMERAS,
    ERR_UNEXPECTED,
    MSG_PROCESSING,
    MSG_SUCCESS,
)
from loyalty_qr.services import qr_token_service
from loyalty_qr.services.qr_token_service import VerificationResult
from loyalty_qr.services.scan_rules import ERR_NOT_REDEMPTION, ERR_WRONG_RESTAURANT


REAR = CameraDevice(id=0, label="Back camera", facing_mode="environment")
FRONT = CameraDevice(id=1, label="Front camera", facing_mode="user")

FAST = ScanConfig(fps=50, success_delay=0.01)
SLOW_SUCCESS = ScanConfig(fps=50, success_delay=5.0)


class FakeCamera(Camera):
    """Camera whose frames are whatever the test queues (decoded text)."""

    def __init__(self, devices=None, list_error=None, start_error=None):
        self.devices = [FRONT, REAR] if devices is None else devices
        self.list_error = list_error
        self.start_error = start_error
        self.frames = queue.Queue()
        self.started_with = None
        self.running = False
        self.paused = False
        self.pause_calls = 0
        self.resume_calls = 0
        self.stop_calls = 0

    def list_devices(self):
        if self.list_error:
            raise self.list_error
        return list(self.devices)

    def start(self, device, config):
        if self.start_error:
            raise self.start_error
        self.started_with = device
        self.running = True

    def read(self):
        if not self.running or self.paused:
            return None
        try:
            return self.frames.get_nowait()
        except queue.Empty:
            return None

    def pause(self):
        self.paused = True
        self.pause_calls += 1

    def resume(self):
        self.paused = False
        self.resume_calls += 1

    def stop(self):
        self.stop_calls += 1
        self.running = False

    @property
    def is_running(self):
        return self.running


class PassthroughDecoder(QRDecoder):
    def decode(self, frame):
        return frame


class Recorder:
    def __init__(self):
        self.successes = []
        self.closes = 0
        self.states = []
        self.success_event = threading.Event()

    def on_scan_success(self, customer_id, restaurant_id, payload):
        self.successes.append((customer_id, restaurant_id, payload))
        self.success_event.set()

    def on_close(self):
        self.closes += 1

    def on_state_change(self, state, message):
        self.states.append((state, message))


def ok_result(restaurant_id="r1", **extra):
    payload = {"customerId": "c1", "restaurantId": restaurant_id, "timestamp": 1, "token": "t" * 64}
    payload.update(extra)
    return VerificationResult.ok(payload)


def make_scanner(verifier, camera=None, config=FAST, mode="customer", restaurant_id="r1"):
    recorder = Recorder()
    camera = camera or FakeCamera()
    scanner = QRScanner(
        restaurant_id,
        recorder.on_scan_success,
        recorder.on_close,
        verifier=verifier,
        camera=camera,
        decoder=PassthroughDecoder(),
        mode=mode,
        config=config,
        on_state_change=recorder.on_state_change,
    )
    return scanner, camera, recorder


class TestStartup:
    def test_starts_scanning_on_rear_camera(self):
        scanner, camera, recorder = make_scanner(lambda text: ok_result())

        assert scanner.start() is ScannerState.SCANNING
        assert camera.started_with == REAR
        assert scanner.device == REAR
        assert [s for s, _ in recorder.states] == [ScannerState.INITIALIZING, ScannerState.SCANNING]
        scanner.release()

    def test_falls_back_to_first_camera(self):
        camera = FakeCamera(devices=[FRONT, CameraDevice(id=2, label="USB")])
        scanner, camera, _ = make_scanner(lambda text: ok_result(), camera=camera)

        scanner.start()

        assert camera.started_with == FRONT
        scanner.release()

    def test_no_cameras(self):
        scanner, camera, _ = make_scanner(lambda text: ok_result(), camera=FakeCamera(devices=[]))

        assert scanner.start() is ScannerState.ERROR
        assert scanner.error == ERR_NO_CAMERAS
        assert camera.running is False

    def test_enumeration_failure(self):
        camera = FakeCamera(list_error=PermissionError("denied"))
        scanner, camera, _ = make_scanner(lambda text: ok_result(), camera=camera)

        assert scanner.start() is ScannerState.ERROR
        assert scanner.error == ERR_CAMERA_ACCESS

    def test_camera_error_message_is_shown(self):
        camera = FakeCamera(start_error=CameraError("Camera is in use by another application"))
        scanner, _, _ = make_scanner(lambda text: ok_result(), camera=camera)

        scanner.start()

        assert scanner.state is ScannerState.ERROR
        assert scanner.error == "Camera is in use by another application"

    def test_other_start_failure_gets_default_message(self):
        camera = FakeCamera(start_error=OSError("device busy"))
        scanner, camera, _ = make_scanner(lambda text: ok_result(), camera=camera)

        scanner.start()

        assert scanner.error == ERR_CAMERA_START
        assert camera.stop_calls >= 1

    def test_start_twice_rejected(self):
        scanner, _, _ = make_scanner(lambda text: ok_result())
        scanner.start()
        try:
            with pytest.raises(RuntimeError):
                scanner.start()
        finally:
            scanner.release()

    def test_unknown_mode_rejected(self):
        with pytest.raises(ValueError):
            make_scanner(lambda text: ok_result(), mode="checkout")


class TestHandleDecoded:
    def test_accepts_and_reports_once(self):
        scanner, camera, recorder = make_scanner(lambda text: ok_result())
        scanner.start()

        assert scanner.handle_decoded("qr") is True
        assert scanner.state is ScannerState.SUCCESS
        assert recorder.success_event.wait(2.0)

        time.sleep(0.05)
        scanner.release()

        assert len(recorder.successes) == 1
        customer_id, restaurant_id, payload = recorder.successes[0]
        assert (customer_id, restaurant_id) == ("c1", "r1")
        assert payload["token"] == "t" * 64
        assert recorder.closes == 0

    def test_state_sequence_and_messages(self):
        scanner, _, recorder = make_scanner(lambda text: ok_result())
        scanner.start()
        scanner.handle_decoded("qr")
        scanner.release()

        assert recorder.states[2:4] == [
            (ScannerState.PROCESSING, MSG_PROCESSING),
            (ScannerState.SUCCESS, MSG_SUCCESS),
        ]

    def test_rejection_shows_error_and_resumes(self):
        scanner, camera, recorder = make_scanner(
            lambda text: VerificationResult.fail("QR code has expired")
        )
        scanner.start()

        assert scanner.handle_decoded("qr") is False

        assert scanner.state is ScannerState.SCANNING
        assert scanner.error == "QR code has expired"
        assert camera.pause_calls == 1
        assert camera.resume_calls == 1
        assert camera.paused is False
        assert recorder.successes == []
        scanner.release()

    def test_error_clears_on_next_scan(self):
        results = iter([VerificationResult.fail("QR code has expired"), ok_result()])
        scanner, _, _ = make_scanner(lambda text: next(results))
        scanner.start()

        scanner.handle_decoded("first")
        scanner.handle_decoded("second")

        assert scanner.state is ScannerState.SUCCESS
        assert scanner.error == ""
        scanner.release()

    def test_wrong_restaurant(self):
        scanner, _, _ = make_scanner(lambda text: ok_result(restaurant_id="r2"))
        scanner.start()

        scanner.handle_decoded("qr")

        assert scanner.error == ERR_WRONG_RESTAURANT
        assert scanner.state is ScannerState.SCANNING
        scanner.release()

    def test_verifier_exception(self):
        def broken(text):
            raise ConnectionError("network down")

        scanner, _, recorder = make_scanner(broken)
        scanner.start()

        assert scanner.handle_decoded("qr") is False
        assert scanner.error == ERR_UNEXPECTED
        assert scanner.state is ScannerState.SCANNING
        assert recorder.successes == []
        scanner.release()

    def test_valid_result_without_customer_resumes_scanning(self):
        scanner, camera, recorder = make_scanner(
            lambda text: VerificationResult.ok({"restaurantId": "r1", "token": "t"})
        )
        scanner.start()

        assert scanner.handle_decoded("qr") is False

        assert scanner.state is ScannerState.SCANNING
        assert scanner.error == ERR_UNEXPECTED
        assert camera.paused is False
        assert recorder.successes == []
        scanner.release()
        assert recorder.successes == []

    def test_ignored_unless_scanning(self):
        calls = []
        scanner, _, _ = make_scanner(lambda text: calls.append(text) or ok_result())

        assert scanner.handle_decoded("before start") is False
        scanner.start()
        scanner.handle_decoded("accepted")
        assert scanner.handle_decoded("after success") is False
        scanner.release()
        assert scanner.handle_decoded("after release") is False

        assert calls == ["accepted"]

    def test_second_decode_during_processing_is_dropped(self):
        entered = threading.Event()
        gate = threading.Event()
        calls = []

        def slow(text):
            calls.append(text)
            entered.set()
            gate.wait(2.0)
            return ok_result()

        scanner, _, recorder = make_scanner(slow)
        scanner.start()
        worker = threading.Thread(target=scanner.handle_decoded, args=("first",))
        worker.start()
        assert entered.wait(2.0)

        assert scanner.state is ScannerState.PROCESSING
        assert scanner.handle_decoded("second") is False

        gate.set()
        worker.join(2.0)
        assert calls == ["first"]
        assert recorder.success_event.wait(2.0)
        scanner.release()


class TestDecodeLoopIntegration:
    def test_frames_from_camera_reach_verifier(self):
        seen = []

        def verifier(text):
            seen.append(text)
            return ok_result()

        scanner, camera, recorder = make_scanner(verifier)
        scanner.start()
        camera.frames.put(None)
        camera.frames.put("decoded-qr")

        assert recorder.success_event.wait(2.0)
        scanner.release()

        assert seen == ["decoded-qr"]
        assert len(recorder.successes) == 1

    def test_rejected_frame_then_valid_frame(self):
        results = iter([VerificationResult.fail("QR code not found or already used"), ok_result()])
        scanner, camera, recorder = make_scanner(lambda text: next(results))
        scanner.start()
        camera.frames.put("used")
        camera.frames.put("fresh")

        assert recorder.success_event.wait(2.0)
        scanner.release()

        assert len(recorder.successes) == 1


class TestRelease:
    def test_close_releases_camera_and_calls_on_close_once(self):
        scanner, camera, recorder = make_scanner(lambda text: ok_result())
        scanner.start()

        scanner.close()
        scanner.release()

        assert scanner.state is ScannerState.CLOSED
        assert camera.running is False
        assert recorder.closes == 1

    def test_release_is_idempotent(self):
        scanner, camera, _ = make_scanner(lambda text: ok_result())
        scanner.start()

        scanner.release()
        scanner.release()

        assert camera.stop_calls == 1

    def test_release_after_start_failure(self):
        scanner, camera, recorder = make_scanner(lambda text: ok_result(), camera=FakeCamera(devices=[]))
        scanner.start()

        scanner.close()

        assert scanner.state is ScannerState.CLOSED
        assert recorder.closes == 1

    def test_close_during_processing_discards_result(self):
        entered = threading.Event()
        gate = threading.Event()
        outcome = {}

        def slow(text):
            entered.set()
            gate.wait(2.0)
            return ok_result()

        scanner, camera, recorder = make_scanner(slow)
        scanner.start()

        def scan():
            outcome["accepted"] = scanner.handle_decoded("qr")

        worker = threading.Thread(target=scan)
        worker.start()
        assert entered.wait(2.0)

        scanner.close()
        gate.set()
        worker.join(2.0)

        assert outcome["accepted"] is False
        assert scanner.state is ScannerState.CLOSED
        assert camera.running is False
        assert recorder.successes == []
        assert recorder.closes == 1

    def test_release_during_success_delay_delivers_once(self):
        scanner, camera, recorder = make_scanner(lambda text: ok_result(), config=SLOW_SUCCESS)
        scanner.start()
        scanner.handle_decoded("qr")
        assert recorder.successes == []

        scanner.release()
        scanner.release()

        assert len(recorder.successes) == 1
        assert camera.running is False
        assert recorder.closes == 0

    def test_context_manager_releases_on_exception(self):
        scanner, camera, recorder = make_scanner(lambda text: ok_result())

        with pytest.raises(KeyError):
            with scanner:
                assert scanner.state is ScannerState.SCANNING
                raise KeyError("host crashed")

        assert scanner.state is ScannerState.CLOSED
        assert camera.running is False
        assert recorder.closes == 0

    def test_listener_failure_does_not_break_scanner(self):
        camera = FakeCamera()

        def bad_listener(state, message):
            raise RuntimeError("ui gone")

        scanner = QRScanner(
            "r1", lambda *args: None, lambda: None,
            verifier=lambda text: ok_result(),
            camera=camera,
            decoder=PassthroughDecoder(),
            config=FAST,
            on_state_change=bad_listener,
        )

        assert scanner.start() is ScannerState.SCANNING
        scanner.release()
        assert camera.running is False


class TestWithTokenService:
    """Scanner wired straight to verify_and_consume_token."""

    def test_customer_qr_in_redemption_mode_is_spent(self, db_session, restaurant_a, customer_a):
        qr_data = qr_token_service.generate_customer_qr_token(restaurant_a.id, customer_a.id)
        scanner, _, recorder = make_scanner(
            qr_token_service.verify_and_consume_token,
            mode="redemption",
            restaurant_id=restaurant_a.id,
        )
        scanner.start()

        assert scanner.handle_decoded(qr_data) is False
        assert scanner.error == ERR_NOT_REDEMPTION
        scanner.release()

        db_session.expire_all()
        assert db_session.query(QRToken).one().used is True
        assert qr_token_service.verify_and_consume_token(qr_data).error == "QR code not found or already used"

    def test_redemption_qr_accepted(self, db_session, restaurant_a, customer_a, reward_a):
        qr_data = qr_token_service.generate_redemption_qr_token(restaurant_a.id, customer_a.id, reward_a.id)
        scanner, _, recorder = make_scanner(
            qr_token_service.verify_and_consume_token,
            mode="redemption",
            restaurant_id=restaurant_a.id,
            config=SLOW_SUCCESS,
        )
        scanner.start()

        assert scanner.handle_decoded(qr_data) is True
        scanner.release()

        customer_id, restaurant_id, payload = recorder.successes[0]
        assert customer_id == customer_a.id
        assert restaurant_id == restaurant_a.id
        assert payload["rewardId"] == reward_a.id
