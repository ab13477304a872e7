# =============================================
# File: telemetry/services/github.py
# Purpose: GitHub activity (events -> repos -> Atom fallback) and contribution calendar
# =============================================
from __future__ import annotations
import os
import re
import xml.etree.ElementTree as ET
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import requests
from loguru import logger

from ..utils import metrics
from ..utils.errors import UpstreamError
from ..utils.timing import github_timeout, upstream_timeout

API_BASE = "https://api.github.com"
WEB_BASE = "https://github.com"
USER_AGENT = "portfolio-telemetry"
DEFAULT_USER = "shokace"

ACTIVITY_LIMIT = 5
REPO_PAGE_SIZE = 12
REPO_FANOUT = 12

_ATOM_NS = {"atom": "http://www.w3.org/2005/Atom"}


def default_user() -> str:
    return os.getenv("GITHUB_USER", DEFAULT_USER)


def _api_headers() -> Dict[str, str]:
    headers = {
        "User-Agent": USER_AGENT,
        "Accept": "application/vnd.github+json",
    }
    token = os.getenv("GITHUB_TOKEN")
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def _iso_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _parse_ts(value: Any) -> float:
    """Epoch seconds for an ISO-8601 string; 0.0 when unparseable."""
    if not isinstance(value, str) or not value:
        return 0.0
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return 0.0
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _item(item_id: str, kind: str, title: str, url: str, repo: str, created_at: str) -> Dict[str, str]:
    return {
        "id": item_id,
        "type": kind,
        "title": title,
        "url": url,
        "repo": repo,
        "created_at": created_at,
    }


# ---------------------------------------------------------------------
# Tier 1: public events
# ---------------------------------------------------------------------

def events_to_items(events: Any) -> List[Dict[str, str]]:
    """Map PushEvent commits and PullRequestEvents to activity items."""
    items: List[Dict[str, str]] = []
    if not isinstance(events, list):
        return items

    for event in events:
        if not isinstance(event, dict):
            continue
        etype = event.get("type")
        repo_info = event.get("repo")
        payload = event.get("payload")
        if not isinstance(repo_info, dict) or not isinstance(payload, dict):
            continue
        repo = repo_info.get("name") or ""
        if not isinstance(repo, str) or not repo:
            continue
        created_at = _text(event.get("created_at"))
        event_id = str(event.get("id") or "")

        if etype == "PushEvent":
            commits = payload.get("commits")
            if not isinstance(commits, list):
                continue
            for commit in commits:
                sha = _text(commit.get("sha")) if isinstance(commit, dict) else ""
                if not sha:
                    continue
                items.append(_item(
                    f"{event_id}-{sha}",
                    "commit",
                    _text(commit.get("message")),
                    f"{WEB_BASE}/{repo}/commit/{sha}",
                    repo,
                    created_at,
                ))

        elif etype == "PullRequestEvent":
            pr = payload.get("pull_request")
            if isinstance(pr, dict):
                items.append(_item(
                    f"{event_id}-pr",
                    "pull_request",
                    _text(pr.get("title")),
                    _text(pr.get("html_url")),
                    repo,
                    created_at,
                ))
    return items


def fetch_event_items(user: str) -> List[Dict[str, str]]:
    """
    Tier 1. HTTP errors and malformed payloads yield []; a transport-level
    failure (connection error, timeout) raises UpstreamError.
    """
    url = f"{API_BASE}/users/{user}/events/public"
    try:
        resp = requests.get(url, headers=_api_headers(), timeout=github_timeout())
    except requests.RequestException as e:
        metrics.record_upstream("github", ok=False)
        raise UpstreamError("Failed to fetch GitHub events.", details=str(e)) from e

    if not resp.ok:
        metrics.record_upstream("github", ok=False)
        logger.info(f"[github] events HTTP {resp.status_code} for user={user}")
        return []
    metrics.record_upstream("github")
    try:
        return events_to_items(resp.json())
    except ValueError:
        return []


# ---------------------------------------------------------------------
# Tier 2: latest commit of recently updated repos
# ---------------------------------------------------------------------

def _get_json(url: str, params: Optional[Dict[str, Any]] = None) -> Any:
    """GET returning parsed JSON, or None on any failure."""
    try:
        resp = requests.get(url, headers=_api_headers(), params=params, timeout=github_timeout())
    except requests.RequestException as e:
        metrics.record_upstream("github", ok=False)
        logger.info(f"[github] {url} failed: {e}")
        return None
    if not resp.ok:
        metrics.record_upstream("github", ok=False)
        return None
    metrics.record_upstream("github")
    try:
        return resp.json()
    except ValueError:
        return None


def _latest_commit(full_name: str) -> Optional[Dict[str, str]]:
    commits = _get_json(f"{API_BASE}/repos/{full_name}/commits", params={"per_page": 1})
    if not isinstance(commits, list) or not commits or not isinstance(commits[0], dict):
        return None
    c = commits[0]
    sha = _text(c.get("sha"))
    url = _text(c.get("html_url"))
    if not sha or not url:
        return None
    detail = c.get("commit")
    if not isinstance(detail, dict):
        return None
    author = detail.get("author")
    committer = detail.get("committer")
    created_at = (
        (_text(author.get("date")) if isinstance(author, dict) else "")
        or (_text(committer.get("date")) if isinstance(committer, dict) else "")
        or _iso_now()
    )
    return _item(
        f"{full_name}-{sha}",
        "commit",
        _text(detail.get("message")),
        url,
        full_name,
        created_at,
    )


def fetch_repo_items(user: str, existing: List[Dict[str, str]], limit: int) -> List[Dict[str, str]]:
    """Tier 2. Returns only new items (deduped by URL against `existing`)."""
    repos = _get_json(
        f"{API_BASE}/users/{user}/repos",
        params={"sort": "updated", "per_page": REPO_PAGE_SIZE},
    )
    if not isinstance(repos, list):
        return []
    names = [_text(r.get("full_name")) for r in repos if isinstance(r, dict)]
    names = [n for n in names if n]
    names = names[:REPO_FANOUT]
    if not names:
        return []

    with ThreadPoolExecutor(max_workers=len(names)) as pool:
        latest = list(pool.map(_latest_commit, names))

    seen_urls = {it["url"] for it in existing}
    out: List[Dict[str, str]] = []
    for item in latest:
        if len(existing) + len(out) >= limit:
            break
        if item is None or item["url"] in seen_urls:
            continue
        seen_urls.add(item["url"])
        out.append(item)
    return out


# ---------------------------------------------------------------------
# Tier 3: public Atom feed
# ---------------------------------------------------------------------

def _repo_from_link(link: str) -> str:
    parts = [p for p in urlparse(link).path.split("/") if p]
    return "/".join(parts[:2]) if len(parts) >= 2 else ""


def parse_atom_entries(text: str) -> List[Dict[str, str]]:
    """Map Atom <entry> elements to activity items; unparseable feed -> []."""
    try:
        root = ET.fromstring(text)
    except ET.ParseError:
        return []

    items: List[Dict[str, str]] = []
    for entry in root.findall("atom:entry", _ATOM_NS):
        link_el = entry.find("atom:link", _ATOM_NS)
        link = (link_el.get("href") if link_el is not None else "") or ""
        title = (entry.findtext("atom:title", default="", namespaces=_ATOM_NS) or "").strip()
        entry_id = (entry.findtext("atom:id", default="", namespaces=_ATOM_NS) or "").strip()
        created_at = (
            entry.findtext("atom:published", default="", namespaces=_ATOM_NS)
            or entry.findtext("atom:updated", default="", namespaces=_ATOM_NS)
            or ""
        ).strip()
        if not link and not title:
            continue
        items.append(_item(
            entry_id or link,
            "pull_request" if "/pull/" in link else "commit",
            title,
            link,
            _repo_from_link(link),
            created_at,
        ))
    return items


def fetch_atom_items(user: str) -> List[Dict[str, str]]:
    try:
        resp = requests.get(
            f"{WEB_BASE}/{user}.atom",
            headers={"User-Agent": USER_AGENT, "Accept": "application/atom+xml"},
            timeout=github_timeout(),
        )
    except requests.RequestException as e:
        metrics.record_upstream("github-atom", ok=False)
        logger.info(f"[github] atom feed failed for user={user}: {e}")
        return []
    if not resp.ok:
        metrics.record_upstream("github-atom", ok=False)
        return []
    metrics.record_upstream("github-atom")
    return parse_atom_entries(resp.text)


def placeholder_item(user: str) -> Dict[str, str]:
    return _item(
        f"{user}-profile",
        "commit",
        "View recent activity on GitHub",
        f"{WEB_BASE}/{user}",
        user,
        _iso_now(),
    )


# ---------------------------------------------------------------------
# Cascade
# ---------------------------------------------------------------------

def rank_items(items: List[Dict[str, str]], limit: int = ACTIVITY_LIMIT) -> List[Dict[str, str]]:
    """Dedupe by id, sort newest first, truncate."""
    seen = set()
    unique = []
    for it in items:
        if it["id"] in seen:
            continue
        seen.add(it["id"])
        unique.append(it)
    unique.sort(key=lambda it: _parse_ts(it.get("created_at")), reverse=True)
    return unique[:limit]


def collect_activity(user: str, limit: int = ACTIVITY_LIMIT) -> Tuple[List[Dict[str, str]], str]:
    """
    Returns (items, tier) where tier names the lowest tier that was needed:
    "events", "repos", "atom" or "placeholder".
    """
    items = fetch_event_items(user)
    tier = "events"

    if len(items) < limit:
        items = items + fetch_repo_items(user, items, limit)
        tier = "repos"

    if not items:
        items = fetch_atom_items(user)
        tier = "atom"

    if not items:
        items = [placeholder_item(user)]
        tier = "placeholder"

    metrics.record_activity_tier(tier)
    logger.info(f"[github] user={user} tier={tier} items={len(items)}")
    return rank_items(items, limit), tier


# ---------------------------------------------------------------------
# Contribution calendar
# ---------------------------------------------------------------------

_CELL_RE = re.compile(r'<td[^>]*class="[^"]*ContributionCalendar-day[^"]*"[^>]*>')
_ATTR_RE = re.compile(r'([a-zA-Z0-9:-]+)="([^"]*)"')
_CELL_ID_RE = re.compile(r"contribution-day-component-(\d+)-(\d+)")


def parse_contribution_cells(html: str) -> List[Dict[str, Any]]:
    cells: List[Dict[str, Any]] = []
    for m in _CELL_RE.finditer(html or ""):
        attrs = dict(_ATTR_RE.findall(m.group(0)))
        date = attrs.get("data-date")
        id_match = _CELL_ID_RE.search(attrs.get("id", ""))
        if not date or not id_match:
            continue
        try:
            level = int(attrs.get("data-level", "0"))
        except ValueError:
            level = 0
        cells.append({
            "date": date,
            "level": level,
            "row": int(id_match.group(1)),
            "col": int(id_match.group(2)),
        })
    return cells


def fetch_contribution_grid(user: str, year: int) -> Dict[str, Any]:
    url = f"{WEB_BASE}/users/{user}/contributions"
    params = {"from": f"{year}-01-01", "to": f"{year}-12-31"}
    headers = {
        "User-Agent": "Mozilla/5.0",
        "X-Requested-With": "XMLHttpRequest",
        "Accept": "text/html",
    }
    try:
        resp = requests.get(url, params=params, headers=headers, timeout=upstream_timeout())
    except requests.RequestException as e:
        metrics.record_upstream("github-web", ok=False)
        raise UpstreamError("GitHub request failed.", details=str(e)) from e
    if not resp.ok:
        metrics.record_upstream("github-web", ok=False)
        raise UpstreamError("GitHub request failed.", details=f"HTTP {resp.status_code}")
    metrics.record_upstream("github-web")

    cells = parse_contribution_cells(resp.text)
    max_col = max((c["col"] for c in cells), default=0)
    min_col = min((c["col"] for c in cells), default=max_col)
    return {
        "user": user,
        "year": year,
        "minCol": min_col,
        "maxCol": max_col,
        "cells": cells,
    }
