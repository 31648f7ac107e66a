"""Stream identifier helpers shared by the scheduler, worker pool and API."""

from __future__ import annotations

import re
from typing import Optional
from urllib.parse import parse_qs, urlparse

_UNSAFE_ID_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


def canonical_stream_id(stream_id: Optional[str], source_url: Optional[str] = None) -> str:
    """Return the key used to share snapshot work between tiles.

    A ``stream`` query parameter on the source URL names the feed more
    reliably than tile-level ids, so it takes precedence.
    """
    if source_url:
        try:
            query = parse_qs(urlparse(source_url).query)
        except ValueError:
            query = {}
        values = query.get("stream")
        if values and values[0].strip():
            return values[0].strip()
    return (stream_id or "").strip()


def sanitize_stream_id(stream_id: str) -> str:
    """Strip everything that is not safe in a file name."""
    return _UNSAFE_ID_CHARS.sub("", stream_id)


def is_whep_url(url: str) -> bool:
    return "whep" in url or "rtc/v1" in url


def whep_to_hls_url(whep_url: str, stream_id: str, *, force_https: bool = False) -> Optional[str]:
    """Translate a WHEP / WebRTC playback URL into the server's HTTP-HLS URL.

    The media server serves HLS on the same host and port as WHEP, at
    ``/live/<stream>.m3u8``. Returns None if the URL cannot be parsed.
    """
    try:
        parsed = urlparse(whep_url)
        port = parsed.port
    except ValueError:
        return None
    if not parsed.hostname:
        return None

    match = re.search(r"[?&]stream=([^&]+)", whep_url)
    stream_name = match.group(1) if match else stream_id
    if not stream_name:
        return None
    if port is None:
        port = 443 if parsed.scheme == "https" else 80
    scheme = "https" if force_https else "http"
    return f"{scheme}://{parsed.hostname}:{port}/live/{stream_name}.m3u8"


__all__ = [
    "canonical_stream_id",
    "is_whep_url",
    "sanitize_stream_id",
    "whep_to_hls_url",
]
