from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

# Click-tracking parameters added by newsletters, job boards and social shares.
_TRACKING_QUERY_PARAMS = frozenset(
    {
        "_hsenc",
        "_hsmi",
        "fbclid",
        "gclid",
        "igshid",
        "mc_cid",
        "mc_eid",
        "mkt_tok",
        "ref",
        "ref_src",
        "trk",
    }
)
_DEFAULT_PORTS = {"http": 80, "https": 443}


def _is_tracking_param(key: str) -> bool:
    lowered = key.lower()
    return lowered.startswith("utm_") or lowered in _TRACKING_QUERY_PARAMS


def canonicalize_url(url: str) -> str:
    """Normalize a listing URL so the same page always compares equal.

    Lower-cases scheme and host, drops default ports, trailing slashes,
    fragments and tracking parameters, and sorts the remaining query.
    Relative or unparseable values are returned stripped but unchanged.
    """
    value = (url or "").strip()
    if not value:
        return value

    try:
        parsed = urlsplit(value)
        port = parsed.port
    except ValueError:
        return value
    if not parsed.scheme or not parsed.hostname:
        return value

    scheme = parsed.scheme.lower()
    netloc = parsed.hostname.lower()
    if port is not None and _DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{netloc}:{port}"

    path = parsed.path.rstrip("/") or "/"
    query = urlencode(
        sorted(
            (key, item)
            for key, item in parse_qsl(parsed.query, keep_blank_values=True)
            if not _is_tracking_param(key)
        ),
        doseq=True,
    )
    return urlunsplit((scheme, netloc, path, query, ""))


def url_host(url: str | None) -> str | None:
    """Return the lower-cased host of an absolute http(s) URL, else None."""
    value = (url or "").strip()
    if not value or any(char.isspace() for char in value):
        return None
    try:
        parsed = urlsplit(value)
        host = parsed.hostname
    except ValueError:
        return None
    if parsed.scheme.lower() not in {"http", "https"} or not host:
        return None
    return host.lower()


def is_valid_url(url: str | None) -> bool:
    return url_host(url) is not None
