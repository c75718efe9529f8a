DEFAULT_MIME_TYPE = "application/octet-stream"

# Extension -> Content-Type used when serving downloads
MIME_TYPES = {
    "mp4": "video/mp4",
    "mkv": "video/webm",
    "webm": "video/webm",
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "pdf": "application/pdf",
    "txt": "text/plain",
    "zip": "application/zip",
    "rar": "application/x-rar-compressed",
    "7z": "application/x-7z-compressed",
    "exe": "application/octet-stream",
}


def guess_mime_type(filename: str) -> str:
    """Content type from the filename's last extension; unknown means binary"""
    if "." not in filename:
        return DEFAULT_MIME_TYPE
    ext = filename.rsplit(".", 1)[-1].lower()
    return MIME_TYPES.get(ext, DEFAULT_MIME_TYPE)
