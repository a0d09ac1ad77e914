# CAMERA SCANNER CLIENT
# Reads webcam frames, decodes barcodes and sends them to the checkout API

import argparse
import logging

import cv2
import requests

from ..services.scanner import BarcodeDecoder, ScanDebouncer

logger = logging.getLogger(__name__)

MODE_COLORS = {
    "cart": (0, 200, 0),   # Green
    "bag": (0, 165, 255),  # Orange
}


class ScannerClient:
    def __init__(self, api_base_url: str = "http://localhost:8000", camera: int = 0,
                 session_id: str = None, debounce_time: float = 2.0, detect_every: int = 5):
        self.api_base_url = api_base_url.rstrip("/")
        self.session_id = session_id
        self.mode = "cart"
        self.detect_every = detect_every

        self.decoder = BarcodeDecoder()
        self.debouncer = ScanDebouncer(debounce_time)

        self.camera = camera
        self.cap = None
        self.last_message = ""

    def toggle_mode(self):
        self.mode = "bag" if self.mode == "cart" else "cart"
        logger.info(f"Scan mode: {self.mode}")

    def send_scan(self, code: str) -> bool:
        """Send one scanned code to the API"""
        try:
            response = requests.post(
                f"{self.api_base_url}/api/scan",
                json={"code": code, "mode": self.mode, "session_id": self.session_id},
                timeout=5
            )
        except requests.exceptions.ConnectionError:
            self.last_message = "Cannot connect to checkout server"
            logger.error(f"Cannot connect to {self.api_base_url} - is the server running?")
            return False

        try:
            result = response.json()
        except ValueError:
            result = {"error": response.text}

        if response.status_code == 200:
            session = result["session"]
            name = result["product"]["name"]
            if self.mode == "bag" and not result["changed"]:
                self.last_message = f"{name} is not waiting to be bagged"
            else:
                self.last_message = f"{name} ({session['remaining']} left to bag)"
            logger.info(self.last_message)
            return True

        self.last_message = result.get("error", f"HTTP {response.status_code}")
        logger.warning(f"Scan of {code} rejected: {self.last_message}")
        return False

    def handle_frame(self, frame, frame_count: int):
        if frame_count % self.detect_every != 0:
            return []

        sent = []
        for code in self.decoder.decode(frame):
            if self.debouncer.is_new_scan(code, self.mode):
                self.send_scan(code)
                sent.append(code)
        return sent

    def manual_entry(self):
        code = input("Barcode: ").strip()
        if code:
            self.send_scan(code)

    def draw_status(self, frame):
        color = MODE_COLORS[self.mode]
        label = "SCANNING TO CART" if self.mode == "cart" else "VERIFYING IN BAG"
        cv2.putText(frame, label, (10, 30), cv2.FONT_HERSHEY_SIMPLEX, 0.8, color, 2)
        cv2.putText(frame, self.last_message, (10, 60), cv2.FONT_HERSHEY_SIMPLEX, 0.6, (255, 255, 255), 1)
        cv2.putText(frame, "B: Cart/Bag | M: Manual entry | Q: Quit", (10, frame.shape[0] - 15),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.5, (200, 200, 200), 1)
        return frame

    def run(self):
        """Main scanning loop"""
        self.cap = cv2.VideoCapture(self.camera)
        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, 1280)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, 720)

        frame_count = 0
        try:
            while True:
                ret, frame = self.cap.read()
                if not ret:
                    logger.error("Failed to grab frame")
                    break

                frame_count += 1
                self.handle_frame(frame, frame_count)

                cv2.imshow('SwiftScan Scanner', self.draw_status(frame))

                key = cv2.waitKey(1) & 0xFF
                if key == ord('q'):
                    break
                elif key == ord('b'):
                    self.toggle_mode()
                elif key == ord('m'):
                    self.manual_entry()
        finally:
            self.cap.release()
            cv2.destroyAllWindows()


def main():
    parser = argparse.ArgumentParser(description="SwiftScan camera scanner")
    parser.add_argument("--api", default="http://localhost:8000", help="Checkout server URL")
    parser.add_argument("--camera", type=int, default=0, help="Camera index")
    parser.add_argument("--session", default=None, help="Session id")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        requests.get(f"{args.api.rstrip('/')}/api/system-status", timeout=2)
        logger.info(f"Checkout server detected at {args.api}")
    except requests.exceptions.RequestException:
        logger.warning(f"Checkout server not reachable at {args.api}, scans will fail until it starts")

    ScannerClient(api_base_url=args.api, camera=args.camera, session_id=args.session).run()


if __name__ == "__main__":
    main()
