"""
Helpers for turning raw image-model outputs into image references.
"""

from __future__ import annotations

import base64
import logging
from collections.abc import Iterable as IterableABC
from typing import Any

import requests

from infinite_heroes.common.errors import MalformedResponseError, NetworkError, ProviderError

logger = logging.getLogger(__name__)

DEFAULT_MAX_IMAGE_BYTES = 10 * 1024 * 1024


def normalize_image_outputs(raw: Any) -> list[str]:
    """
    Normalize the image outputs returned by Replicate into a list of URL strings.
    """

    if raw is None:
        return []

    url = getattr(raw, "url", None)
    if isinstance(url, str):
        return [url]

    if isinstance(raw, str):
        return [raw]

    if isinstance(raw, bytes):
        return [raw.decode("utf-8", errors="ignore")]

    if isinstance(raw, IterableABC):
        collected = list(raw)
        if not collected:
            return []

        if all(isinstance(item, str) and len(item) == 1 for item in collected):
            return ["".join(collected)]

        normalized: list[str] = []
        for item in collected:
            item_url = getattr(item, "url", None)
            if isinstance(item_url, str):
                normalized.append(item_url)
            elif isinstance(item, str):
                normalized.append(item)
            elif isinstance(item, bytes):
                normalized.append(item.decode("utf-8", errors="ignore"))
            elif isinstance(item, IterableABC):
                normalized.extend(normalize_image_outputs(item))
            elif item is not None:
                normalized.append(str(item))
        return normalized

    return [str(raw)]


def first_image_ref(raw: Any, *, label: str) -> str:
    """Return the first usable image reference or raise a malformed-response error."""
    for candidate in normalize_image_outputs(raw):
        text = candidate.strip()
        if text.startswith(("https://", "http://", "data:image")):
            return text
    raise MalformedResponseError(f"{label} did not return valid image data.")


def fetch_image_data_url(
    url: str,
    *,
    timeout: float = 30.0,
    max_bytes: int = DEFAULT_MAX_IMAGE_BYTES,
    session: requests.Session | None = None,
) -> str:
    """
    Download an image and return it as a ``data:`` URL.

    Only HTTPS URLs are fetched; data URLs are returned unchanged.
    """
    if url.startswith("data:"):
        return url
    if not url.startswith("https://"):
        raise MalformedResponseError(f"Refusing to fetch non-HTTPS image URL: {url}")

    http = session or requests
    try:
        with http.get(url, timeout=timeout, stream=True) as response:
            response.raise_for_status()
            chunks, total = _read_capped(response, max_bytes)
            mime_type = response.headers.get("content-type", "image/png").split(";")[0].strip() or "image/png"
    except requests.Timeout as exc:
        raise NetworkError(f"Timed out fetching image from {url}") from exc
    except requests.RequestException as exc:
        raise NetworkError(f"Failed to fetch image: {exc}") from exc

    encoded = base64.b64encode(b"".join(chunks)).decode("ascii")
    logger.debug("Inlined %d byte image from %s", total, url)
    return f"data:{mime_type};base64,{encoded}"


def _read_capped(response: Any, max_bytes: int) -> tuple[list[bytes], int]:
    # Size-cap failures are never retried.
    declared = response.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_bytes:
        raise ProviderError(f"Image too large: {declared} bytes (max {max_bytes})")

    chunks: list[bytes] = []
    total = 0
    for chunk in response.iter_content(chunk_size=64 * 1024):
        total += len(chunk)
        if total > max_bytes:
            raise ProviderError(f"Image exceeded {max_bytes} bytes while downloading")
        chunks.append(chunk)
    return chunks, total
