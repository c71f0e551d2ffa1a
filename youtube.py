"""
YouTube and link reachability checks

Best-effort probes used by the admin course form, the showcase submit form
and the quick learning feed. Nothing here needs an API key: results come
from oEmbed, the embed page and the public HTML pages, so every answer is a
heuristic and callers treat it as such.
"""

import json
import logging
import re
from typing import List, Optional
from urllib.parse import parse_qs, quote, urlparse

import requests

import settings

logger = logging.getLogger(__name__)

VIDEO_ID_RE = re.compile(r"^[a-zA-Z0-9_-]{11}$")
HANDLE_RE = re.compile(r"^[a-zA-Z0-9._-]{2,100}$")
WATCH_ID_RE = re.compile(r"watch\?v=([a-zA-Z0-9_-]{11})")
SHORTS_ID_RE = re.compile(r"\\?/shorts\\?/([a-zA-Z0-9_-]{11})")

BROWSER_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
                  "(KHTML, like Gecko) Chrome/120.0 Safari/537.36",
    "Accept-Language": "en-US,en;q=0.9",
}
LINK_CHECK_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; OneOriginHub/1.0)",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}

BLOCKED_EMBED_PHRASES = (
    "video unavailable",
    "playback on other websites has been disabled",
    "this video is private",
    "sign in to confirm your age",
    "this video is not available",
)
SOFT_404_PHRASES = (
    "page not found",
    "error 404",
    "404 not found",
    "the page you are looking for",
    "does not exist",
    "this blog post does not exist",
    "we can't find the page",
    "we can\u2019t find the page",
    ">404<",
    "status code 404",
)
PLACEHOLDER_DOMAINS = {"example.com", "example.org", "example.net"}

# Search results filtered to Shorts
SHORTS_SEARCH_FILTER = "EgIYAQ%3D%3D"
SNIPPET_BYTES = 4096


class CheckError(Exception):
    """A request the checker refuses outright (bad input, blocked host)."""

    def __init__(self, status_code: int, reason: str):
        super().__init__(reason)
        self.status_code = status_code
        self.reason = reason


def extract_video_id(url: Optional[str]) -> str:
    """Video id from watch, youtu.be, embed and shorts URLs; "" when absent."""
    s = (url or "").strip()
    if not s:
        return ""
    parsed = urlparse(s)
    host = (parsed.hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    if host == "youtu.be":
        return parsed.path.lstrip("/")[:11]
    if host == "youtube.com" or host.endswith(".youtube.com"):
        if parsed.path == "/watch":
            return (parse_qs(parsed.query).get("v") or [""])[0][:11]
        parts = [p for p in parsed.path.split("/") if p]
        for marker in ("embed", "shorts"):
            if marker in parts:
                idx = parts.index(marker)
                if idx + 1 < len(parts):
                    return parts[idx + 1][:11]
    return ""


def normalize_handle(raw: Optional[str]) -> str:
    s = (raw or "").strip()
    s = re.sub(r"^@", "", s)
    s = re.sub(r"^https?://", "", s, flags=re.IGNORECASE)
    return re.sub(r"\s+", "", s)


def is_private_hostname(hostname: Optional[str]) -> bool:
    h = (hostname or "").lower()
    if not h:
        return True
    if h == "localhost" or h.endswith(".localhost"):
        return True
    if h in ("0.0.0.0", "127.0.0.1"):
        return True
    if h.startswith("10.") or h.startswith("192.168."):
        return True
    return bool(re.match(r"^172\.(1[6-9]|2\d|3[0-1])\.", h))


def looks_like_soft_404(html: Optional[str]) -> bool:
    if not html:
        return False
    lower = html.lower()
    return any(p in lower for p in SOFT_404_PHRASES)


def extract_json_object_after_marker(text: str, marker: str) -> Optional[str]:
    """Brace-balanced JSON object following ``marker`` in a page's source."""
    idx = text.find(marker)
    if idx == -1:
        return None
    start = text.find("{", idx)
    if start == -1:
        return None
    depth = 0
    for i in range(start, len(text)):
        ch = text[i]
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


def _collect_ids(pattern: re.Pattern, html: str, limit: int) -> List[str]:
    ids: List[str] = []
    seen = set()
    for match in pattern.finditer(html):
        vid = match.group(1)
        if vid in seen:
            continue
        seen.add(vid)
        ids.append(vid)
        if len(ids) >= limit:
            break
    return ids


class YouTubeScraper:
    """Keyless YouTube and link probes over a shared HTTP session."""

    def __init__(self, session: Optional[requests.Session] = None, timeout: Optional[float] = None):
        self.session = session or requests.Session()
        self.timeout = timeout or settings.HTTP_TIMEOUT

    def _get(self, url: str, headers: Optional[dict] = None, **kwargs):
        return self.session.get(url, headers=headers or BROWSER_HEADERS, timeout=self.timeout, **kwargs)

    # Links

    def check_url(self, url: Optional[str]) -> dict:
        """Is ``url`` a live HTML page? Raises CheckError for unusable input."""
        url = (url or "").strip()
        if not url:
            raise CheckError(400, "Missing url")
        parsed = urlparse(url)
        if not parsed.scheme or not parsed.netloc:
            raise CheckError(400, "Invalid url")
        if parsed.scheme not in ("http", "https"):
            raise CheckError(400, "Unsupported protocol")

        hostname = (parsed.hostname or "").lower()
        if hostname in PLACEHOLDER_DOMAINS:
            return {
                "ok": False,
                "status": 200,
                "contentType": "text/html",
                "finalUrl": url,
                "reason": "Blocked placeholder domain",
            }
        if is_private_hostname(hostname):
            raise CheckError(400, "Blocked hostname")

        try:
            head_status = self.session.head(
                url, headers=LINK_CHECK_HEADERS, allow_redirects=True, timeout=self.timeout,
            ).status_code
        except requests.RequestException:
            head_status = None

        resp = self.session.get(
            url,
            headers={**LINK_CHECK_HEADERS, "Range": f"bytes=0-{SNIPPET_BYTES - 1}"},
            allow_redirects=True,
            timeout=self.timeout,
        )
        content_type = resp.headers.get("content-type", "")
        status_ok = 200 <= resp.status_code < 400
        is_html = bool(re.search(r"text/html|application/xhtml\+xml", content_type, re.IGNORECASE))
        snippet = resp.text[:SNIPPET_BYTES] if status_ok and is_html else ""

        ok = status_ok and is_html and not looks_like_soft_404(snippet)
        if ok:
            reason = None
        elif not status_ok:
            reason = "http_status"
        elif not is_html:
            reason = "non_html"
        else:
            reason = "soft_404"
        return {
            "ok": ok,
            "status": resp.status_code,
            "contentType": content_type,
            "finalUrl": resp.url,
            "reason": reason,
            "headStatus": head_status,
        }

    # Videos

    def _oembed(self, video_id: str):
        watch = f"https://www.youtube.com/watch?v={video_id}"
        return self._get(f"https://www.youtube.com/oembed?url={quote(watch, safe='')}&format=json")

    def _embed_blocked(self, video_id: str):
        """(http_ok, blocked) for the embed page."""
        resp = self._get(f"https://www.youtube.com/embed/{video_id}")
        if not resp.ok:
            return False, resp.status_code
        lower = resp.text.lower()
        return True, any(p in lower for p in BLOCKED_EMBED_PHRASES)

    def check_video(self, video_id: Optional[str]) -> dict:
        """Can ``video_id`` be embedded? Raises CheckError for malformed ids."""
        video_id = (video_id or "").strip()
        if not VIDEO_ID_RE.match(video_id):
            raise CheckError(400, "Invalid videoId format")

        oembed_resp = self._oembed(video_id)
        if not oembed_resp.ok:
            return {"ok": False, "reason": f"oEmbed {oembed_resp.status_code}"}
        try:
            oembed = oembed_resp.json()
        except ValueError:
            oembed = {}
        title = oembed.get("title") or ""
        author_name = oembed.get("author_name") or ""
        author_url = oembed.get("author_url") or ""

        http_ok, detail = self._embed_blocked(video_id)
        if not http_ok:
            return {"ok": False, "title": title, "reason": f"Embed HTTP {detail}"}
        if detail:
            return {"ok": False, "title": title, "reason": "Video unavailable or embedding disabled"}

        player = self._player_response(video_id)
        if player is not None:
            playability = player.get("playabilityStatus") or {}
            status = playability.get("status")
            playable_in_embed = playability.get("playableInEmbed")
            reason = playability.get("reason") or (
                ((playability.get("errorScreen") or {}).get("playerErrorMessageRenderer") or {})
                .get("reason", {}).get("simpleText")
            )
            details = player.get("videoDetails") or {}
            ok = status == "OK" and playable_in_embed is not False
            return {
                "ok": ok,
                "status": status or "UNKNOWN",
                "embeddable": playable_in_embed is not False,
                "title": details.get("title") or title,
                "authorName": author_name or details.get("author") or "",
                "authorUrl": author_url,
                "reason": "" if ok else (reason or "Video not playable or not embeddable"),
            }

        return {
            "ok": True,
            "status": "OK",
            "embeddable": True,
            "title": title,
            "authorName": author_name,
            "authorUrl": author_url,
            "reason": "",
        }

    def _player_response(self, video_id: str) -> Optional[dict]:
        try:
            resp = self._get(f"https://www.youtube.com/watch?v={video_id}")
            if not resp.ok:
                return None
            raw = extract_json_object_after_marker(resp.text, "ytInitialPlayerResponse")
            return json.loads(raw) if raw else None
        except (requests.RequestException, ValueError) as e:
            logger.debug("Watch page parse failed for %s: %s", video_id, e)
            return None

    def check_embeddable(self, video_id: str) -> dict:
        """Lighter check used by the feed refresh: oEmbed title plus embed page."""
        video_id = (video_id or "").strip()
        if not VIDEO_ID_RE.match(video_id):
            return {"ok": False, "title": ""}
        title = ""
        try:
            resp = self._oembed(video_id)
            if resp.ok:
                title = resp.json().get("title") or ""
        except (requests.RequestException, ValueError):
            pass
        try:
            http_ok, blocked = self._embed_blocked(video_id)
        except requests.RequestException as e:
            logger.debug("Embed page fetch failed for %s: %s", video_id, e)
            return {"ok": False, "title": title}
        return {"ok": http_ok and not blocked, "title": title}

    # Discovery

    def search_video_ids(self, query: Optional[str], limit: int = 15) -> dict:
        query = (query or "").strip()
        if not query:
            raise CheckError(400, "Missing query")
        if len(query) > 200:
            raise CheckError(400, "Query too long")
        resp = self._get(f"https://www.youtube.com/results?search_query={quote(query, safe='')}")
        if not resp.ok:
            return {"ok": False, "query": query, "reason": f"HTTP {resp.status_code}", "videoIds": []}
        ids = _collect_ids(WATCH_ID_RE, resp.text, limit)
        return {"ok": bool(ids), "query": query, "videoIds": ids}

    def channel_shorts(self, handle: Optional[str], limit: int = 1000) -> dict:
        handle = re.sub(r"^@", "", (handle or "").strip())
        if not handle:
            raise CheckError(400, "Missing handle")
        if not HANDLE_RE.match(handle):
            raise CheckError(400, "Invalid handle")
        resp = self._get(f"https://www.youtube.com/@{quote(handle)}/shorts?hl=en&gl=US")
        if not resp.ok:
            return {"ok": False, "handle": handle, "reason": f"HTTP {resp.status_code}", "videoIds": []}
        ids = _collect_ids(SHORTS_ID_RE, resp.text, limit)
        return {"ok": bool(ids), "handle": handle, "videoIds": ids}

    def channel_short_ids(self, handle: str, limit: int = 200) -> List[str]:
        """Shorts ids for the feed refresh; [] on any failure."""
        h = normalize_handle(handle)
        if not h:
            return []
        try:
            resp = self._get(f"https://www.youtube.com/@{quote(h)}/shorts")
        except requests.RequestException as e:
            logger.warning("Fetching shorts for @%s failed: %s", h, e)
            return []
        if not resp.ok:
            return []
        return _collect_ids(SHORTS_ID_RE, resp.text, limit)

    def search_short_ids(self, query: str, limit: int = 60) -> List[str]:
        q = (query or "").strip()
        if not q:
            return []
        url = (
            f"https://www.youtube.com/results?search_query={quote(q, safe='')}"
            f"&sp={SHORTS_SEARCH_FILTER}&hl=en&gl=US"
        )
        try:
            resp = self._get(url)
        except requests.RequestException as e:
            logger.warning("Shorts search for %r failed: %s", q, e)
            return []
        if not resp.ok:
            return []
        return _collect_ids(SHORTS_ID_RE, resp.text, limit)


def get_scraper() -> YouTubeScraper:
    return YouTubeScraper()
