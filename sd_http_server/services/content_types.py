DEFAULT_CONTENT_TYPE = "application/octet-stream"

CONTENT_TYPES = {
    ".htm": "text/html",
    ".html": "text/html",
    ".css": "text/css",
    ".js": "application/javascript",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".txt": "text/plain",
}


def get_content_type(path: str) -> str:
    """Map a file name suffix to the MIME type sent with downloads."""
    lowered = path.lower()
    for suffix, content_type in CONTENT_TYPES.items():
        if lowered.endswith(suffix):
            return content_type
    return DEFAULT_CONTENT_TYPE
