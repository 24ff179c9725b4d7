import ipaddress
from dataclasses import dataclass
from urllib.parse import urlparse

MAX_URL_LENGTH = 2048

BLOCKED_HOSTNAMES = {
    "localhost",
    "localhost.localdomain",
    "0.0.0.0",
    "::1",
    "[::]",
}


@dataclass
class ValidationResult:
    valid: bool
    error: str | None = None


def _is_internal_ip(hostname: str) -> bool:
    try:
        ip = ipaddress.ip_address(hostname.strip("[]"))
    except ValueError:
        return False
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_multicast
        or ip.is_reserved
        or ip.is_unspecified
    )


def validate_scraping_url(url, allow_localhost=False, allow_private_ips=False) -> ValidationResult:
    if not url or not isinstance(url, str) or not url.strip():
        return ValidationResult(False, "URL is required")

    url = url.strip()
    if len(url) > MAX_URL_LENGTH:
        return ValidationResult(False, f"URL is too long (max {MAX_URL_LENGTH} characters)")

    try:
        parsed = urlparse(url)
        hostname = (parsed.hostname or "").lower()
        username, password = parsed.username, parsed.password
    except ValueError:
        return ValidationResult(False, "Invalid URL format")

    if parsed.scheme not in ("http", "https"):
        if not parsed.scheme:
            return ValidationResult(False, "Invalid URL format")
        return ValidationResult(False, f"Invalid protocol: {parsed.scheme}:. Only HTTP and HTTPS are allowed")

    if not hostname:
        return ValidationResult(False, "Invalid URL format")

    if not allow_localhost and hostname in BLOCKED_HOSTNAMES:
        return ValidationResult(False, "Localhost URLs are not allowed")

    if not allow_private_ips and _is_internal_ip(hostname):
        return ValidationResult(False, "Private/internal IP addresses are not allowed")

    if username or password:
        return ValidationResult(False, "URLs with embedded credentials are not allowed")

    return ValidationResult(True)


def validate_image_url(url) -> ValidationResult:
    """Like validate_scraping_url, but inline data: images are accepted."""
    if not url or not isinstance(url, str) or not url.strip():
        return ValidationResult(False, "URL is required")
    if url.strip().startswith("data:image/"):
        return ValidationResult(True)
    return validate_scraping_url(url)
