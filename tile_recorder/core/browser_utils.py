"""Helpers for browser selection and launch options."""

from __future__ import annotations

import re
from difflib import get_close_matches
from typing import Sequence, Tuple

SUPPORTED_BROWSERS: Tuple[str, ...] = ("chromium", "firefox", "webkit")

DEFAULT_VIEWPORT: Tuple[int, int] = (1200, 800)

CHROMIUM_LAUNCH_ARGS: Tuple[str, ...] = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--start-maximized",
)


def normalize_browser_name(browser_name: str, supported: Sequence[str] | None = None) -> str:
    """Return a canonical browser name, fixing close typos when possible.

    Parameters
    ----------
    browser_name:
        The user supplied browser identifier. Matching is case-insensitive and
        ignores leading/trailing whitespace.
    supported:
        The iterable of supported browser identifiers. When omitted the
        ``SUPPORTED_BROWSERS`` constant is used.

    Raises
    ------
    ValueError
        If ``browser_name`` is empty or does not correspond to a supported
        browser and no close match can be determined.
    """

    if supported is None:
        supported = SUPPORTED_BROWSERS

    if browser_name is None:
        raise ValueError("Browser name cannot be empty.")

    normalized = browser_name.strip().lower()
    if not normalized:
        raise ValueError("Browser name cannot be empty.")

    canonical_map = {option.lower(): option for option in supported}
    if normalized in canonical_map:
        return canonical_map[normalized]

    matches = get_close_matches(normalized, list(canonical_map.keys()), n=1, cutoff=0.6)
    if matches:
        return canonical_map[matches[0]]

    options = ", ".join(canonical_map.values())
    raise ValueError(f"Unsupported browser '{browser_name}'. Choose from {options}.")


def parse_viewport(value: str | None) -> Tuple[int, int]:
    """Parse ``WIDTHxHEIGHT``; falls back to ``DEFAULT_VIEWPORT`` on bad input."""

    if not value:
        return DEFAULT_VIEWPORT
    match = re.fullmatch(r"\s*(\d{2,5})\s*[xX,]\s*(\d{2,5})\s*", value)
    if not match:
        return DEFAULT_VIEWPORT
    return int(match.group(1)), int(match.group(2))


def launch_args_for(browser_name: str) -> Tuple[str, ...]:
    # Sandbox flags are chromium-only; firefox/webkit reject them.
    return CHROMIUM_LAUNCH_ARGS if browser_name == "chromium" else ()


_SCHEME_RE = re.compile(r"^(?:[a-zA-Z][a-zA-Z0-9+.-]*://|about:|data:|file:)")
_LOOPBACK_RE = re.compile(r"^(?:localhost|127\.\d+\.\d+\.\d+|\[::1\])(?::\d+)?(?:[/?#]|$)", re.IGNORECASE)


def normalize_url(url: str) -> str:
    """Add a scheme when the caller omitted it.

    Loopback hosts get ``http://``, everything else ``https://``.
    ``host:port`` is not a scheme.
    """

    url = (url or "").strip()
    if not url or _SCHEME_RE.match(url):
        return url
    if _LOOPBACK_RE.match(url):
        return f"http://{url}"
    return f"https://{url}"


__all__ = [
    "CHROMIUM_LAUNCH_ARGS",
    "DEFAULT_VIEWPORT",
    "SUPPORTED_BROWSERS",
    "launch_args_for",
    "normalize_browser_name",
    "normalize_url",
    "parse_viewport",
]
