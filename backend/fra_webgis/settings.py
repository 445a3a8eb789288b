import os
import re
from typing import Optional
from urllib.parse import quote

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
FRONTEND_ORIGIN = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")

# Upstream WebGIS data API
WEBGIS_API_BASE_URL = os.getenv("WEBGIS_API_BASE_URL", "http://localhost:5000")
WEBGIS_PROFILE = os.getenv("WEBGIS_PROFILE", "fra")
WEBGIS_TIMEOUT = float(os.getenv("WEBGIS_TIMEOUT_S", "20"))
WEBGIS_RETRY_ATTEMPTS = int(os.getenv("WEBGIS_RETRY_ATTEMPTS", "3"))
WEBGIS_RETRY_WAIT = float(os.getenv("WEBGIS_RETRY_WAIT_S", "1"))

FILTER_OPTIONS_TTL = int(os.getenv("FILTER_OPTIONS_TTL", "900"))
# 0 keeps every detail record for the life of the session
DETAIL_CACHE_MAX_SIZE = int(os.getenv("DETAIL_CACHE_MAX_SIZE", "0"))
RELOAD_DEBOUNCE = float(os.getenv("RELOAD_DEBOUNCE_S", "0.3"))

_FILENAME_SANITIZE_PATTERN = re.compile(r"[^A-Za-z0-9._-]+")


def sanitize_export_filename(value: Optional[str], extension: str) -> Optional[str]:
    if not value:
        return None

    trimmed = value.strip()
    if not trimmed:
        return None

    if trimmed.lower().endswith(extension.lower()):
        trimmed = trimmed[: -len(extension)]

    cleaned = _FILENAME_SANITIZE_PATTERN.sub("-", trimmed)
    cleaned = re.sub(r"-{2,}", "-", cleaned)
    cleaned = cleaned.strip("-_.")

    if not cleaned:
        return None

    cleaned = cleaned[:100]

    return f"{cleaned}{extension}"


def build_content_disposition(filename: str) -> str:
    safe = filename.replace('"', "")
    utf8 = quote(safe)
    return f'attachment; filename="{safe}"; filename*=UTF-8\'\'{utf8}'
