import base64
import binascii
import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

import cv2
import numpy as np

from ..models.product import Product
from .catalog import Catalog, ProductNotFound

logger = logging.getLogger(__name__)

MANUAL_ENTRY_ERROR = "Product not found. Please check the ID."


class ScanResolver:
    """Maps raw scanned codes onto catalog products"""

    def __init__(self, catalog: Catalog):
        self.catalog = catalog

    def resolve_scan(self, raw_code: str) -> Optional[Product]:
        if not raw_code or not raw_code.strip():
            return None
        return self.catalog.get_product_by_barcode(raw_code)

    def require(self, raw_code: str) -> Product:
        product = self.resolve_scan(raw_code)
        if product is None:
            logger.info(f"Unknown barcode scanned: {raw_code!r}")
            raise ProductNotFound(MANUAL_ENTRY_ERROR)
        return product


class ScanDebouncer:
    """
    Suppresses repeat reads of one physical scan.

    A camera sees the same barcode on many consecutive frames. Reads are
    keyed by scan mode as well as code, so putting an item in the cart and
    then bagging it straight away are two separate scans.
    """

    def __init__(self, debounce_time: float = 2.0, clock: Callable[[], float] = time.monotonic):
        self.debounce_time = debounce_time
        self.clock = clock
        self._last_seen: Dict[Tuple[Optional[str], str], float] = {}
        self._lock = threading.Lock()

    def is_new_scan(self, code: str, mode: Optional[str] = None) -> bool:
        """
        Record a read of code in mode

        Returns:
            False if the same code was accepted in the same mode within
            the debounce window
        """
        key = (mode, code.strip())
        now = self.clock()

        with self._lock:
            last = self._last_seen.get(key)
            if last is not None and now - last < self.debounce_time:
                return False
            self._last_seen[key] = now
            self._prune(now)
            return True

    def _prune(self, now: float) -> None:
        expired = [key for key, seen in self._last_seen.items() if now - seen >= self.debounce_time]
        for key in expired:
            del self._last_seen[key]

    def clear(self, mode: Optional[str] = None):
        """Forget recent reads, for one mode or for all of them"""
        with self._lock:
            if mode is None:
                self._last_seen.clear()
            else:
                for key in [k for k in self._last_seen if k[0] == mode]:
                    del self._last_seen[key]


class BarcodeDecoder:
    """Decodes 1D barcodes (EAN-13, UPC-A, Code-128) and QR codes from frames"""

    def __init__(self):
        self.barcode_detector = cv2.barcode.BarcodeDetector()
        self.qr_detector = cv2.QRCodeDetector()

    def decode(self, frame: np.ndarray) -> List[str]:
        if frame is None or not frame.size:
            return []

        codes = []
        for name, detector in (("barcode", self.barcode_detector), ("qr", self.qr_detector)):
            try:
                result = detector.detectAndDecodeMulti(frame)
            except cv2.error as e:
                logger.warning(f"{name} detection failed: {e}")
                continue
            ok, decoded_info = result[0], result[1]
            if not ok or decoded_info is None:
                continue
            for value in decoded_info:
                if value and value not in codes:
                    codes.append(value)

        return codes


def decode_data_url(frame_data: str) -> Optional[np.ndarray]:
    """Decode a base64 image (optionally a data: URL) into a BGR frame"""
    if not frame_data:
        return None
    try:
        img_data = base64.b64decode(frame_data.split(',')[-1])
    except (binascii.Error, ValueError):
        logger.warning("Received a frame that is not valid base64")
        return None
    nparr = np.frombuffer(img_data, np.uint8)
    if not nparr.size:
        return None
    return cv2.imdecode(nparr, cv2.IMREAD_COLOR)
