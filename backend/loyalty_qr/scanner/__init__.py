from .camera import Camera, CameraDevice, CameraError, QRDecoder, OpenCVCamera, OpenCVDecoder
from .config import ScanConfig
from .controller import QRScanner, ScannerState
from .decode_loop import DecodeLoop
from .verifiers import LocalVerifier, HTTPVerifier

__all__ = [
    'Camera', 'CameraDevice', 'CameraError', 'QRDecoder', 'OpenCVCamera', 'OpenCVDecoder',
    'ScanConfig',
    'QRScanner', 'ScannerState',
    'DecodeLoop',
    'LocalVerifier', 'HTTPVerifier',
]
