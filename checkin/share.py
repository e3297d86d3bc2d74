"""Share-link helpers for the queue's join page."""

from __future__ import annotations

from urllib.parse import quote, urlparse

QR_SERVICE_URL = "https://api.qrserver.com/v1/create-qr-code/"

_LOOPBACK_HOSTS = ("localhost", "::1", "[::1]")


def _is_loopback(host: str | None) -> bool:
    if not host:
        return True
    host = host.lower()
    return host in _LOOPBACK_HOSTS or host.startswith("127.")


def share_target(request_url: str | None, public_url: str) -> str:
    """Return the URL attendees should open.

    A link pointing at this machine is useless to someone scanning it from a
    phone, so loopback addresses are swapped for the public URL.
    """

    if not request_url:
        return public_url
    parsed = urlparse(request_url)
    if _is_loopback(parsed.hostname):
        return public_url
    return request_url


def qr_image_url(target: str, *, size: int = 300) -> str:
    """Return an image reference encoding ``target`` as a QR code."""

    if size <= 0:
        raise ValueError("size must be positive")
    return f"{QR_SERVICE_URL}?size={size}x{size}&data={quote(target, safe='')}"
