"""Configuration settings for the SD HTTP Server."""
import os

# Volume
MOUNT_BASE_DIR = os.getenv("MOUNT_BASE_DIR", "./sd")  # host directory standing in for the card
CARD_TYPE = os.getenv("CARD_TYPE", "SDHC/SDXC")  # CARD_NONE means no card inserted

# Retention (0 disables)
MAX_FILES_TO_KEEP = int(os.getenv("MAX_FILES_TO_KEEP", "0"))
RETENTION_INTERVAL_SECONDS = int(os.getenv("RETENTION_INTERVAL_SECONDS", "0"))

# Capture
CAPTURE_COMMAND = os.getenv("CAPTURE_COMMAND", "")  # e.g. "libcamera-still -n -o {output}"
CAPTURE_TIMEOUT_SECONDS = float(os.getenv("CAPTURE_TIMEOUT_SECONDS", "10"))

# Streaming
CHUNK_SIZE = 8192  # 8KB

# Logging
LOG_DIR = os.getenv("LOG_DIR", "logs")

# Server
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "80"))
