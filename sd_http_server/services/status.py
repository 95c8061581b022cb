from sd_http_server.services.mount_detector import MountDetector
from sd_http_server.services.volume import Volume


class StatusReporter:
    def __init__(self, volume: Volume, detector: MountDetector):
        self.volume = volume
        self.detector = detector

    def status(self) -> str:
        """Short text snapshot of mount state, detected root and card type."""
        mounted = self.volume.is_mounted()
        root = self.detector.detect_root()
        return (
            f"SD mounted: {'yes' if mounted else 'no'}\n"
            f"Detected mount root: {root or '(none)'}\n"
            f"Card type: {self.volume.card_type.value}\n"
        )
