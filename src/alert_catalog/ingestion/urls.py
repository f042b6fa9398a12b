"""Redirect unwrapping and URL normalization used as dedup keys."""

from __future__ import annotations

import re
from collections.abc import Callable
from urllib.parse import parse_qsl, quote, urlparse, urlunparse

TRACKING_PARAMS = frozenset(
    {
        "fbclid",
        "gclid",
        "msclkid",
        "ref",
        "ref_src",
        "ref_url",
        "source",
        "_ga",
        "mc_cid",
        "mc_eid",
    },
)
TRACKING_PARAM_PREFIXES = ("utm_",)

MAX_UNWRAP_DEPTH = 3

_GOOGLE_HOST_RE = re.compile(r"^(www\.)?google\.[a-z]{2,3}(\.[a-z]{2})?$")
_REPEATED_SLASHES_RE = re.compile(r"/{2,}")

# (host predicate, path predicate, destination params in priority order)
_REDIRECTORS: tuple[
    tuple[Callable[[str], object], Callable[[str], bool], tuple[str, ...]],
    ...,
] = (
    (_GOOGLE_HOST_RE.match, lambda path: path == "/url", ("url", "q")),
    (
        lambda host: host in {"l.facebook.com", "lm.facebook.com", "m.facebook.com"},
        lambda path: path == "/l.php",
        ("u",),
    ),
    (
        lambda host: host.endswith("safelinks.protection.outlook.com"),
        lambda _path: True,
        ("url",),
    ),
    (
        lambda host: host in {"www.linkedin.com", "linkedin.com"},
        lambda path: path.startswith("/redir/redirect"),
        ("url",),
    ),
    (lambda host: host == "slack-redir.net", lambda path: path == "/link", ("url",)),
    (lambda host: host == "out.reddit.com", lambda _path: True, ("url",)),
)


def unwrap(raw_url: str) -> str:
    """Return the destination hidden inside a redirector URL, or ``raw_url`` unchanged."""

    current = raw_url
    for _ in range(MAX_UNWRAP_DEPTH):
        destination = _unwrap_once(current)
        if destination is None:
            break
        current = destination
    return current


def wrap(destination: str) -> str:
    """Build a Google-style redirector URL that points at ``destination``."""

    return (
        "https://www.google.com/url?rct=j&sa=t&url="
        f"{quote(destination, safe='')}&ct=ga&usg=AOvVaw0"
    )


def normalize(url: str) -> str:
    """Canonicalize URL for equality checks.

    Drops tracking parameters, the fragment, default ports, duplicate and
    trailing slashes; sorts remaining query pairs; lowercases everything.
    """

    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return url.lower()
    if not parsed.scheme or not parsed.netloc:
        return url.lower()

    scheme = parsed.scheme.lower()
    netloc = parsed.netloc.lower()
    if netloc.endswith(":80") and scheme == "http":
        netloc = netloc[:-3]
    if netloc.endswith(":443") and scheme == "https":
        netloc = netloc[:-4]

    path = _REPEATED_SLASHES_RE.sub("/", parsed.path)
    if path.endswith("/"):
        path = path[:-1]

    kept = [
        pair
        for pair in parsed.query.split("&")
        if pair and not _is_tracking_param(pair.split("=", 1)[0])
    ]
    kept.sort(key=str.lower)

    cleaned = parsed._replace(
        scheme=scheme,
        netloc=netloc,
        path=path,
        query="&".join(kept),
        fragment="",
    )
    return str(urlunparse(cleaned)).lower()


def report_key(normalized_url: str, granularity: str = "url") -> str:
    """Equality key for the report ledger.

    ``url`` keeps the full normalized URL; ``domain`` collapses every path on a
    host to the host root.
    """

    if granularity == "url":
        return normalized_url
    if granularity == "domain":
        try:
            parsed = urlparse(normalized_url)
        except ValueError:
            return normalized_url
        if not parsed.scheme or not parsed.netloc:
            return normalized_url
        return f"{parsed.scheme}://{parsed.netloc}"
    raise ValueError(f"Unsupported report key granularity: {granularity!r}")


def is_absolute_http_url(value: object) -> bool:
    """True for absolute http(s) URLs with a host."""

    if not isinstance(value, str) or not value.strip():
        return False
    try:
        parsed = urlparse(value.strip())
    except ValueError:
        return False
    return parsed.scheme.lower() in {"http", "https"} and bool(parsed.netloc)


def extract_domain(url: str) -> str:
    """Get normalized domain from URL."""

    try:
        return urlparse(url).netloc.lower() or "unknown"
    except ValueError:
        return "unknown"


def _unwrap_once(url: str) -> str | None:
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return None
    host = parsed.netloc.lower()
    if not host or not parsed.query:
        return None

    for host_matches, path_matches, params in _REDIRECTORS:
        if not host_matches(host) or not path_matches(parsed.path):
            continue
        values = dict(parse_qsl(parsed.query, keep_blank_values=True))
        for param in params:
            candidate = values.get(param, "")
            if is_absolute_http_url(candidate):
                return candidate.strip()
        return None
    return None


def _is_tracking_param(name: str) -> bool:
    lowered = name.lower()
    return lowered in TRACKING_PARAMS or lowered.startswith(TRACKING_PARAM_PREFIXES)
