from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

# Query parameters that change on every presigned link to the same object.
SIGNATURE_PARAMS = frozenset(
    {
        "expires",
        "signature",
        "key-pair-id",
        "policy",
        "x-amz-algorithm",
        "x-amz-credential",
        "x-amz-date",
        "x-amz-expires",
        "x-amz-security-token",
        "x-amz-signature",
        "x-amz-signedheaders",
        "x-goog-algorithm",
        "x-goog-credential",
        "x-goog-date",
        "x-goog-expires",
        "x-goog-signature",
        "x-goog-signedheaders",
    }
)


def normalize_url(url: str) -> str:
    """Canonical form of a video URL, used to deduplicate transcription requests."""
    parsed = urlparse(url.strip())
    if not parsed.scheme:
        parsed = urlparse(f"https://{url.strip()}")

    scheme = parsed.scheme.lower()
    netloc = parsed.netloc.lower()
    if netloc.startswith("www."):
        netloc = netloc[4:]

    query_pairs = [
        (k, v)
        for (k, v) in parse_qsl(parsed.query, keep_blank_values=False)
        if k.lower() not in SIGNATURE_PARAMS
    ]
    query = urlencode(sorted(query_pairs))

    return urlunparse((scheme, netloc, parsed.path.rstrip("/"), "", query, ""))


def is_remote_url(url: str) -> bool:
    return urlparse(url.strip()).scheme.lower() in ("http", "https")
