"""Tests for cookies.CookieLookup and browser profile loading."""

from __future__ import annotations

import sqlite3
import time
from pathlib import Path

from cookies import CookieLookup, find_firefox_cookies, load_browser_cookies

FAR_FUTURE = int(time.time()) + 86_400 * 365


def _firefox_db(path: Path, rows: list[tuple[str, str, str, int]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    conn.execute("CREATE TABLE moz_cookies (host TEXT, name TEXT, value TEXT, expiry INTEGER)")
    conn.executemany("INSERT INTO moz_cookies VALUES (?, ?, ?, ?)", rows)
    conn.commit()
    conn.close()


def _chrome_db(path: Path, rows: list[tuple[str, str, str, int]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    conn.execute("CREATE TABLE cookies (host_key TEXT, name TEXT, value TEXT, expires_utc INTEGER)")
    conn.executemany("INSERT INTO cookies VALUES (?, ?, ?, ?)", rows)
    conn.commit()
    conn.close()


def test_lookup_matches_parent_domains() -> None:
    lookup = CookieLookup({".example.com": {"sid": "abc"}, "news.example.com": {"pref": "dark"}})

    assert lookup("news.example.com") == "sid=abc; pref=dark"
    assert lookup("example.com") == "sid=abc"
    assert lookup("other.org") is None
    assert len(lookup) == 2


def test_most_specific_host_wins_on_name_clash() -> None:
    lookup = CookieLookup()
    lookup.add(".example.com", "sid", "parent")
    lookup.add("www.example.com", "sid", "child")

    assert lookup("www.example.com") == "sid=child"


def test_single_label_host_is_matched() -> None:
    assert CookieLookup({"localhost": {"a": "1"}})("localhost") == "a=1"


def test_loads_default_firefox_profile(tmp_path: Path) -> None:
    firefox = tmp_path / ".mozilla/firefox"
    _firefox_db(firefox / "other.profile/cookies.sqlite", [("other.com", "x", "1", FAR_FUTURE)])
    _firefox_db(
        firefox / "main.default/cookies.sqlite",
        [
            (".example.com", "sid", "abc", FAR_FUTURE),
            (".expired.com", "old", "1", 1),
        ],
    )
    (firefox / "profiles.ini").write_text(
        "[Profile0]\nName=other\nPath=other.profile\n\n"
        "[Profile1]\nName=default\nPath=main.default\nDefault=1\n",
        encoding="utf-8",
    )

    lookup = load_browser_cookies(home=tmp_path)

    assert lookup("www.example.com") == "sid=abc"
    assert lookup("expired.com") is None
    assert lookup("other.com") is None


def test_any_firefox_profile_is_used_without_profiles_ini(tmp_path: Path) -> None:
    db = tmp_path / ".mozilla/firefox/abc.default-release/cookies.sqlite"
    _firefox_db(db, [("example.com", "a", "1", FAR_FUTURE)])

    assert find_firefox_cookies(tmp_path) == db


def test_chrome_profile_is_preferred(tmp_path: Path) -> None:
    chrome_future = (FAR_FUTURE + 11_644_473_600) * 1_000_000
    _chrome_db(
        tmp_path / ".config/google-chrome/Default/Cookies",
        [(".example.com", "chrome", "yes", chrome_future)],
    )
    _firefox_db(
        tmp_path / ".mozilla/firefox/p.default/cookies.sqlite",
        [(".example.com", "firefox", "yes", FAR_FUTURE)],
    )

    lookup = load_browser_cookies(home=tmp_path)

    assert lookup("example.com") == "chrome=yes"


def test_missing_or_corrupt_profiles_give_empty_lookup(tmp_path: Path) -> None:
    assert len(load_browser_cookies(home=tmp_path)) == 0

    bad = tmp_path / ".config/chromium/Default/Cookies"
    bad.parent.mkdir(parents=True)
    bad.write_bytes(b"not a database")

    assert len(load_browser_cookies(home=tmp_path)) == 0
