# =============================================
# File: tests/test_github_activity.py
# Purpose: Events -> repos -> Atom cascade, dedup, ordering and truncation
# =============================================
import sys, os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

import requests
from fastapi.testclient import TestClient

from telemetry.services import github as gh
from telemetry.utils import rcache


class _Resp:
    def __init__(self, status=200, payload=None, text=""):
        self.status_code = status
        self.ok = 200 <= status < 300
        self._payload = payload
        self.text = text

    def json(self):
        return self._payload


def _push(event_id, repo, shas, created_at):
    return {
        "id": event_id,
        "type": "PushEvent",
        "created_at": created_at,
        "repo": {"name": repo},
        "payload": {"commits": [{"sha": s, "message": f"msg {s}"} for s in shas]},
    }


def _pr(event_id, repo, created_at):
    return {
        "id": event_id,
        "type": "PullRequestEvent",
        "created_at": created_at,
        "repo": {"name": repo},
        "payload": {"pull_request": {"title": "Add feature", "html_url": f"https://github.com/{repo}/pull/7"}},
    }


ATOM = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <entry>
    <id>tag:github.com,2008:PushEvent/1</id>
    <published>2024-05-01T10:00:00Z</published>
    <link type="text/html" rel="alternate" href="https://github.com/octo/repo/compare/abc...def"/>
    <title type="html">octo pushed to main in octo/repo &amp; friends</title>
  </entry>
  <entry>
    <id>tag:github.com,2008:PullRequestEvent/2</id>
    <published>2024-05-02T10:00:00Z</published>
    <link type="text/html" rel="alternate" href="https://github.com/octo/other/pull/3"/>
    <title type="html">octo opened &lt;PR&gt; #3</title>
  </entry>
</feed>
"""


def _install(monkeypatch, routes):
    """routes: list of (url-substring, response-or-exception); records called URLs."""
    calls = []
    def _fake_get(url, headers=None, params=None, timeout=None, **kw):
        calls.append(url)
        for needle, resp in routes:
            if needle in url:
                if isinstance(resp, Exception):
                    raise resp
                return resp
        return _Resp(404, None)
    monkeypatch.setattr(gh.requests, "get", _fake_get)
    return calls


def test_tier1_sufficient_skips_fallbacks(monkeypatch):
    events = [
        _push("1", "octo/a", ["s1", "s2", "s3"], "2024-05-01T10:00:00Z"),
        _push("2", "octo/b", ["s4", "s5"], "2024-05-03T10:00:00Z"),
        _pr("3", "octo/c", "2024-05-02T10:00:00Z"),
    ]
    calls = _install(monkeypatch, [("/events/public", _Resp(200, events))])
    items, tier = gh.collect_activity("octo")

    assert tier == "events"
    assert len(items) == 5
    assert not any("/repos" in u or ".atom" in u for u in calls)
    stamps = [gh._parse_ts(i["created_at"]) for i in items]
    assert stamps == sorted(stamps, reverse=True)
    assert items[0]["repo"] == "octo/b"
    assert items[0]["url"] == "https://github.com/octo/b/commit/s4"
    assert len({i["id"] for i in items}) == 5


def test_tier2_fills_and_dedupes_by_url(monkeypatch):
    events = [_push("1", "octo/a", ["s1"], "2024-05-01T10:00:00Z")]
    repos = [{"full_name": "octo/a"}, {"full_name": "octo/b"}]
    commit_a = [{
        "sha": "s1",
        "html_url": "https://github.com/octo/a/commit/s1",
        "commit": {"message": "dup", "author": {"date": "2024-05-01T10:00:00Z"}},
    }]
    commit_b = [{
        "sha": "zz",
        "html_url": "https://github.com/octo/b/commit/zz",
        "commit": {"message": "fresh", "author": {"date": "2024-06-01T00:00:00Z"}},
    }]
    calls = _install(monkeypatch, [
        ("/events/public", _Resp(200, events)),
        ("/users/octo/repos", _Resp(200, repos)),
        ("/repos/octo/a/commits", _Resp(200, commit_a)),
        ("/repos/octo/b/commits", _Resp(200, commit_b)),
    ])
    items, tier = gh.collect_activity("octo")

    assert tier == "repos"
    assert [i["title"] for i in items] == ["fresh", "msg s1"]
    assert not any(".atom" in u for u in calls)


def test_atom_fallback_when_nothing_else(monkeypatch):
    calls = _install(monkeypatch, [
        ("/events/public", _Resp(200, [])),
        ("/users/octo/repos", _Resp(200, [])),
        ("octo.atom", _Resp(200, None, text=ATOM)),
    ])
    items, tier = gh.collect_activity("octo")

    assert tier == "atom"
    assert any(u.endswith("/octo.atom") for u in calls)
    assert items[0]["type"] == "pull_request"
    assert items[0]["title"] == "octo opened <PR> #3"
    assert items[0]["repo"] == "octo/other"
    assert items[1]["type"] == "commit"
    assert items[1]["title"].endswith("octo/repo & friends")


def test_placeholder_when_every_tier_is_empty(monkeypatch):
    _install(monkeypatch, [
        ("/events/public", _Resp(500, None)),
        ("/users/octo/repos", _Resp(500, None)),
        ("octo.atom", _Resp(200, None, text="<html>not a feed")),
    ])
    items, tier = gh.collect_activity("octo")
    assert tier == "placeholder"
    assert len(items) == 1
    assert items[0]["url"] == "https://github.com/octo"


def test_endpoint_shape_and_cache(monkeypatch):
    rcache.clear()
    events = [_pr("9", "octo/c", "2024-05-02T10:00:00Z")] + [
        _push(str(i), "octo/a", [f"x{i}"], f"2024-05-0{i}T10:00:00Z") for i in range(1, 6)
    ]
    calls = _install(monkeypatch, [("/events/public", _Resp(200, events))])

    from telemetry.main import app
    client = TestClient(app)
    r1 = client.get("/api/github/activity", params={"user": "octo"})
    assert r1.status_code == 200
    body = r1.json()
    assert body["user"] == "octo"
    assert len(body["items"]) == 5
    assert set(body["items"][0]) == {"id", "type", "title", "url", "repo", "created_at"}

    n = len(calls)
    r2 = client.get("/api/github/activity", params={"user": "octo"})
    assert r2.json() == body
    assert len(calls) == n


def test_transport_error_on_events_is_502(monkeypatch):
    rcache.clear()
    _install(monkeypatch, [("/events/public", requests.Timeout("slow"))])
    from telemetry.main import app
    client = TestClient(app)
    r = client.get("/api/github/activity", params={"user": "octo"})
    assert r.status_code == 502
    assert r.json()["error"] == "Failed to fetch GitHub events."


def test_rejects_invalid_username():
    from telemetry.main import app
    client = TestClient(app)
    r = client.get("/api/github/activity", params={"user": "../etc"})
    assert r.status_code == 422


def test_malformed_events_are_skipped():
    good = _push("5", "octo/a", ["ok"], "2024-05-01T10:00:00Z")
    events = [
        {"id": "1", "type": "PushEvent", "created_at": "2024-05-01T10:00:00Z",
         "repo": "octo/a", "payload": {"commits": [{"sha": "s1", "message": "m"}]}},
        {"id": "2", "type": "PushEvent", "created_at": "2024-05-01T10:00:00Z",
         "repo": {"name": "octo/a"}, "payload": "x"},
        {"id": "3", "type": "PushEvent", "created_at": "2024-05-01T10:00:00Z",
         "repo": {"name": "octo/a"}, "payload": {"commits": 7}},
        {"id": "4", "type": "PushEvent", "created_at": 12345,
         "repo": {"name": "octo/a"}, "payload": {"commits": [{"sha": "s4", "message": ["not", "text"]}]}},
        good,
    ]
    items = gh.events_to_items(events)
    assert [i["id"] for i in items] == ["4-s4", "5-ok"]
    assert items[0]["title"] == "" and items[0]["created_at"] == ""


def test_malformed_commit_in_repo_fallback_is_skipped(monkeypatch):
    repos = [{"full_name": "octo/bad"}, {"full_name": "octo/good"}, {"full_name": 42}]
    bad = [{"sha": "b1", "html_url": "https://github.com/octo/bad/commit/b1", "commit": "oops"}]
    good = [{
        "sha": "g1",
        "html_url": "https://github.com/octo/good/commit/g1",
        "commit": {"message": "fine", "author": "nobody", "committer": {"date": "2024-06-01T00:00:00Z"}},
    }]
    _install(monkeypatch, [
        ("/events/public", _Resp(200, [])),
        ("/users/octo/repos", _Resp(200, repos)),
        ("/repos/octo/bad/commits", _Resp(200, bad)),
        ("/repos/octo/good/commits", _Resp(200, good)),
    ])
    items, tier = gh.collect_activity("octo")
    assert tier == "repos"
    assert [i["url"] for i in items] == ["https://github.com/octo/good/commit/g1"]
    assert items[0]["created_at"] == "2024-06-01T00:00:00Z"


def test_repo_fallback_fans_out_to_at_most_twelve(monkeypatch):
    repos = [{"full_name": f"octo/r{i}"} for i in range(20)]
    calls = _install(monkeypatch, [
        ("/events/public", _Resp(200, [])),
        ("/users/octo/repos", _Resp(200, repos)),
        ("/commits", _Resp(200, [])),
    ])
    gh.collect_activity("octo")
    commit_calls = [u for u in calls if u.endswith("/commits")]
    assert len(commit_calls) == gh.REPO_FANOUT == 12
    assert {u.split("/repos/")[1].rsplit("/", 1)[0] for u in commit_calls} == {f"octo/r{i}" for i in range(12)}
