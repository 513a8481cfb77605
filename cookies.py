"""Per-domain Cookie header lookup backed by a local browser profile."""

from __future__ import annotations

import configparser
import logging
import shutil
import sqlite3
import tempfile
from collections import defaultdict
from datetime import UTC, datetime
from pathlib import Path

LOGGER = logging.getLogger(__name__)

# Chrome timestamps count microseconds from 1601-01-01.
_CHROME_EPOCH_OFFSET_SECONDS = 11_644_473_600

_CHROME_QUERY = (
    "SELECT host_key, name, value FROM cookies "
    "WHERE expires_utc > ? AND name != '' AND value != ''"
)
_FIREFOX_QUERY = (
    "SELECT host, name, value FROM moz_cookies "
    "WHERE expiry > ? AND name != '' AND value != ''"
)


class CookieLookup:
    """Callable ``domain -> Cookie header value | None``.

    A cookie stored for ``.example.com`` is sent to ``example.com`` and every
    subdomain of it.
    """

    def __init__(self, cookies: dict[str, dict[str, str]] | None = None) -> None:
        self._cookies: dict[str, dict[str, str]] = defaultdict(dict)
        for host, values in (cookies or {}).items():
            self._cookies[_normalize_host(host)].update(values)

    def __len__(self) -> int:
        return sum(len(values) for values in self._cookies.values())

    def add(self, host: str, name: str, value: str) -> None:
        self._cookies[_normalize_host(host)][name] = value

    def __call__(self, domain: str) -> str | None:
        host = _normalize_host(domain)
        merged: dict[str, str] = {}
        labels = host.split(".")
        # Parent domains first so the most specific host wins on name clashes.
        for start in range(max(len(labels) - 2, 0), -1, -1):
            candidate = ".".join(labels[start:])
            merged.update(self._cookies.get(candidate, {}))
        if not merged:
            return None
        return "; ".join(f"{name}={value}" for name, value in merged.items())


def load_browser_cookies(home: Path | None = None) -> CookieLookup:
    """Load unexpired cookies from Chrome/Chromium, falling back to Firefox.

    Never raises: a missing or unreadable profile yields an empty lookup.
    """
    home = home or Path.home()
    chrome_paths = [
        home / ".config/google-chrome/Default/Cookies",
        home / ".config/chromium/Default/Cookies",
    ]
    now = datetime.now(UTC).timestamp()

    for path in chrome_paths:
        if not path.exists():
            continue
        chrome_now = int((now + _CHROME_EPOCH_OFFSET_SECONDS) * 1_000_000)
        lookup = _load_from_db(path, _CHROME_QUERY, chrome_now)
        if lookup:
            LOGGER.info("Loaded %s cookies from %s", len(lookup), path)
            return lookup
        LOGGER.info("Found %s but loaded 0 cookies", path)

    firefox_path = find_firefox_cookies(home)
    if firefox_path is not None:
        lookup = _load_from_db(firefox_path, _FIREFOX_QUERY, int(now))
        if lookup:
            LOGGER.info("Loaded %s cookies from %s", len(lookup), firefox_path)
            return lookup
        LOGGER.info("Found %s but loaded 0 cookies", firefox_path)

    LOGGER.info("No browser cookies loaded (paywalled sites may not work)")
    return CookieLookup()


def find_firefox_cookies(home: Path) -> Path | None:
    """Locate cookies.sqlite of the default Firefox profile, or of any profile."""
    firefox_dir = home / ".mozilla/firefox"
    if not firefox_dir.is_dir():
        return None

    profiles_ini = firefox_dir / "profiles.ini"
    if profiles_ini.exists():
        parser = configparser.ConfigParser()
        try:
            parser.read(profiles_ini, encoding="utf-8")
        except configparser.Error as exc:
            LOGGER.warning("Could not parse %s: %s", profiles_ini, exc)
        else:
            for section in parser.sections():
                if parser.get(section, "Default", fallback="0") != "1":
                    continue
                profile = parser.get(section, "Path", fallback="")
                candidate = firefox_dir / profile / "cookies.sqlite"
                if profile and candidate.exists():
                    return candidate

    for entry in sorted(firefox_dir.iterdir()):
        candidate = entry / "cookies.sqlite"
        if entry.is_dir() and candidate.exists():
            return candidate
    return None


def _load_from_db(db_path: Path, query: str, now: int) -> CookieLookup:
    lookup = CookieLookup()
    # Browsers keep the database locked while running; read a copy.
    with tempfile.TemporaryDirectory() as tmp:
        copy = Path(tmp) / "cookies.db"
        try:
            shutil.copy(db_path, copy)
            conn = sqlite3.connect(copy)
        except (OSError, sqlite3.Error) as exc:
            LOGGER.warning("Could not load cookies from %s: %s", db_path, exc)
            return lookup
        try:
            for host, name, value in conn.execute(query, (now,)):
                if isinstance(value, str):
                    lookup.add(host, name, value)
        except sqlite3.Error as exc:
            LOGGER.warning("Could not load cookies from %s: %s", db_path, exc)
        finally:
            conn.close()
    return lookup


def _normalize_host(host: str) -> str:
    return host.strip().lstrip(".").lower()
