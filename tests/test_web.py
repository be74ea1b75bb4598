"""
Unit Tests for the Stream Flask application.

Test Coverage:
    - Reader pages: index, permalink, not found
    - Atom feed
    - JSON listing API and pagination
    - Admin endpoints: authentication, validation, create/update/delete
    - Storage failures mapped to 500
    - Web Share Target endpoint, JSON and browser form
    - Browser sign-in and the admin session cookie
    - Web app manifest, service worker and offline page
    - .well-known redirects to the fedsoc bridge

Testing Strategy:
    Uses the Flask test client with a real EntryStore on a temporary database.
    Outbound notification clients are MagicMock objects so no network
    requests are made.

Running Tests:
    $ pytest tests/test_web.py -v
"""
from unittest.mock import MagicMock, patch

import pytest

from entries import StorageError
from indieweb import WebmentionDispatcher
from stream import StreamPublisher
from web import create_app
from web.web import (
    ADMIN_COOKIE,
    EntryValidationError,
    _safe_next,
    admin_session_value,
    next_offset,
    parse_with_default,
    validate_entry_payload,
)
from websub import HubNotifier


TOKEN = "test-admin-token"
AUTH = {"X-Admin-Token": TOKEN}
BROWSER_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"


@pytest.fixture
def notifiers():
    dispatcher = MagicMock(spec=WebmentionDispatcher)
    dispatcher.dispatch.return_value = []
    hub_notifier = MagicMock(spec=HubNotifier)
    hub_notifier.notify.return_value = True
    return dispatcher, hub_notifier


@pytest.fixture
def publisher(store, stream_config, notifiers):
    dispatcher, hub_notifier = notifiers
    return StreamPublisher(store, stream_config["host"], dispatcher=dispatcher, hub_notifier=hub_notifier)


@pytest.fixture
def app(store, publisher, stream_config, monkeypatch):
    monkeypatch.delenv("STREAM_ADMIN_TOKEN", raising=False)
    app = create_app(store, publisher, stream_config)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


class TestHelpers:

    def test_parse_with_default(self):
        assert parse_with_default("5", 20) == 5
        assert parse_with_default("abc", 20) == 20
        assert parse_with_default(None, 20) == 20
        assert parse_with_default("-3", 20) == -3

    def test_next_offset(self):
        assert next_offset(0, 10, 10) == 10
        assert next_offset(10, 10, 3) == -1
        assert next_offset(0, 10, 0) == -1

    def test_validate_entry_payload(self):
        assert validate_entry_payload({"title": "", "content": "c", "extra": 1}) == {"title": "", "content": "c"}
        with pytest.raises(EntryValidationError):
            validate_entry_payload({"title": "t"})
        with pytest.raises(EntryValidationError):
            validate_entry_payload({"title": "t", "content": ""})
        with pytest.raises(EntryValidationError):
            validate_entry_payload(None)

    def test_safe_next(self):
        assert _safe_next("/admin/share?text=x") == "/admin/share?text=x"
        assert _safe_next("//evil.example.com/") == "/"
        assert _safe_next("https://evil.example.com/") == "/"
        assert _safe_next(None) == "/"


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.get_json() == {"status": "healthy"}


class TestReaderPages:

    def test_empty_index(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert b"Nothing here yet." in response.data
        assert b'rel="next"' not in response.data

    def test_index_lists_entries_newest_first(self, client, store):
        store.create("first *post*", "First")
        store.create("second post", "Second")

        body = client.get("/").get_data(as_text=True)

        assert body.index("Second") < body.index("First")
        assert "<em>post</em>" in body
        assert '<link rel="hub" href="https://hub.example.com/">' in body

    def test_index_pagination_link(self, client, store):
        for i in range(3):
            store.create(f"content {i}", f"title {i}")

        body = client.get("/?limit=2").get_data(as_text=True)

        assert "offset=2&amp;limit=2" in body

    def test_entry_page(self, client, store):
        entry_id = store.create("Hello [there](https://example.com/)", "Greeting <b>")

        response = client.get(f"/entry/{entry_id}")
        body = response.get_data(as_text=True)

        assert response.status_code == 200
        assert '<a href="https://example.com/">there</a>' in body
        assert "Greeting &lt;b&gt;" in body
        assert f"https://stream.example.com/entry/{entry_id}" in body
        assert 'class="h-entry"' in body

    def test_entry_not_found(self, client):
        response = client.get("/entry/nope")
        assert response.status_code == 404
        assert b"Entry not found." in response.data


class TestFeed:

    def test_feed(self, client, store):
        entry_id = store.create("Feed <em>content</em>", "Feed title")

        response = client.get("/feed")
        body = response.get_data(as_text=True)

        assert response.status_code == 200
        assert response.mimetype == "application/atom+xml"
        assert '<link rel="self" href="https://stream.example.com/feed"/>' in body
        assert '<link rel="hub" href="https://hub.example.com/"/>' in body
        assert f"<id>https://stream.example.com/entry/{entry_id}</id>" in body
        assert "&lt;em&gt;content&lt;/em&gt;" in body
        assert "<updated>2024-01-15T10:00:00Z</updated>" in body

    def test_empty_feed_uses_epoch(self, client):
        body = client.get("/feed").get_data(as_text=True)
        assert "<updated>1970-01-01T00:00:00Z</updated>" in body
        assert "<entry>" not in body

    def test_feed_is_capped(self, client, store):
        for i in range(12):
            store.create(f"content {i}", f"title {i}")
        body = client.get("/feed").get_data(as_text=True)
        assert body.count("<entry>") == 10


class TestApi:

    def test_list_entries(self, client, store):
        ids = [store.create(f"content {i}", f"title {i}") for i in range(3)]

        data = client.get("/api/entries?limit=2").get_json()

        assert [e["id"] for e in data["entries"]] == [ids[2], ids[1]]
        assert data["next_offset"] == 2

        data = client.get("/api/entries?limit=2&offset=2").get_json()
        assert [e["id"] for e in data["entries"]] == [ids[0]]
        assert data["next_offset"] == -1

    def test_list_entries_bad_params_use_defaults(self, client, store):
        store.create("c", "t")
        data = client.get("/api/entries?limit=abc&offset=xyz").get_json()
        assert len(data["entries"]) == 1
        assert data["next_offset"] == -1

    def test_out_of_range_pagination(self, client, store):
        entry_id = store.create("c", "t")

        data = client.get(f"/api/entries?limit={10**20}").get_json()
        assert [e["id"] for e in data["entries"]] == [entry_id]
        assert data["next_offset"] == -1

        data = client.get(f"/api/entries?offset={10**20}").get_json()
        assert data["entries"] == []

        assert client.get(f"/?offset={10**20}").status_code == 200

    def test_get_entry(self, client, store):
        entry_id = store.create("content", "title")
        data = client.get(f"/api/entries/{entry_id}").get_json()
        assert data["id"] == entry_id
        assert data["content"] == "content"
        assert data["created"].startswith("2024-01-15T10:00:00")

    def test_get_entry_not_found(self, client):
        response = client.get("/api/entries/nope")
        assert response.status_code == 404
        assert response.get_json() == {"status": "error", "message": "Entry not found"}

    def test_storage_failure(self, client, store):
        with patch.object(store, "list", side_effect=StorageError("disk I/O error")):
            response = client.get("/api/entries")
        assert response.status_code == 500
        assert response.get_json()["message"] == "Storage failure"


class TestAdminAuth:

    def test_missing_token(self, client):
        response = client.post("/admin/entries", json={"title": "t", "content": "c"})
        assert response.status_code == 401

    def test_wrong_token(self, client, store):
        response = client.post("/admin/entries", json={"title": "t", "content": "c"},
                               headers={"X-Admin-Token": "wrong"})
        assert response.status_code == 401
        assert store.count() == 0

    def test_disabled_without_configured_token(self, store, publisher, stream_config, monkeypatch):
        monkeypatch.delenv("STREAM_ADMIN_TOKEN", raising=False)
        stream_config["security"] = {}
        client = create_app(store, publisher, stream_config).test_client()

        response = client.post("/admin/entries", json={"title": "t", "content": "c"}, headers=AUTH)

        assert response.status_code == 503
        assert response.get_json()["message"] == "Admin API disabled"

    def test_token_from_environment(self, store, publisher, stream_config, monkeypatch):
        monkeypatch.setenv("STREAM_ADMIN_TOKEN", "env-token")
        stream_config["security"] = {}
        client = create_app(store, publisher, stream_config).test_client()

        response = client.post("/admin/entries", json={"title": "t", "content": "c"},
                               headers={"X-Admin-Token": "env-token"})

        assert response.status_code == 201


class TestAdminEntries:

    def test_create_json(self, client, store, notifiers):
        dispatcher, hub_notifier = notifiers

        response = client.post(
            "/admin/entries",
            json={"title": "Hello", "content": "See [post](https://blog.example.com/post)"},
            headers=AUTH,
        )

        assert response.status_code == 201
        data = response.get_json()
        assert data["status"] == "success"
        assert data["permalink"] == f"https://stream.example.com/entry/{data['id']}"
        assert store.get(data["id"]).title == "Hello"
        dispatcher.dispatch.assert_called_once_with(data["permalink"], ["https://blog.example.com/post"])
        hub_notifier.notify.assert_called_once_with("https://stream.example.com/feed")

    def test_create_form(self, client, store):
        response = client.post("/admin/entries", data={"title": "Form", "content": "from a form"}, headers=AUTH)

        assert response.status_code == 201
        assert store.get(response.get_json()["id"]).content == "from a form"

    def test_create_succeeds_when_notifications_fail(self, client, store, notifiers):
        dispatcher, hub_notifier = notifiers
        hub_notifier.notify.return_value = False

        response = client.post("/admin/entries", json={"title": "t", "content": "c"}, headers=AUTH)

        assert response.status_code == 201
        assert store.count() == 1

    @pytest.mark.parametrize("payload", [
        {"title": "t"},
        {"content": "c"},
        {"title": "t", "content": ""},
        {"title": 1, "content": "c"},
        ["not", "an", "object"],
    ])
    def test_create_invalid_payload(self, client, store, payload):
        response = client.post("/admin/entries", json=payload, headers=AUTH)

        assert response.status_code == 400
        data = response.get_json()
        assert data["message"] == "Invalid entry payload"
        assert "details" in data
        assert store.count() == 0

    def test_create_storage_failure(self, client, store, notifiers):
        dispatcher, hub_notifier = notifiers
        with patch.object(store, "create", side_effect=StorageError("disk full")):
            response = client.post("/admin/entries", json={"title": "t", "content": "c"}, headers=AUTH)

        assert response.status_code == 500
        dispatcher.dispatch.assert_not_called()
        hub_notifier.notify.assert_not_called()

    @pytest.mark.parametrize("method", ["post", "put"])
    def test_update(self, client, store, method):
        entry_id = store.create("old", "old")

        response = getattr(client, method)(
            f"/admin/entries/{entry_id}", json={"title": "new", "content": "new content"}, headers=AUTH
        )

        assert response.status_code == 200
        data = response.get_json()
        assert data["entry"]["id"] == entry_id
        assert data["entry"]["title"] == "new"
        assert store.get(entry_id).content == "new content"

    def test_update_not_found(self, client):
        response = client.put("/admin/entries/missing", json={"title": "t", "content": "c"}, headers=AUTH)
        assert response.status_code == 404
        assert response.get_json()["message"] == "Entry not found"

    def test_delete(self, client, store, notifiers):
        dispatcher, hub_notifier = notifiers
        entry_id = store.create("c", "t")

        response = client.delete(f"/admin/entries/{entry_id}", headers=AUTH)

        assert response.status_code == 200
        assert response.get_json() == {"status": "success", "id": entry_id}
        assert store.count() == 0
        hub_notifier.notify.assert_not_called()

        assert client.delete(f"/admin/entries/{entry_id}", headers=AUTH).status_code == 404

    def test_delete_requires_token(self, client, store):
        entry_id = store.create("c", "t")
        assert client.delete(f"/admin/entries/{entry_id}").status_code == 401
        assert store.count() == 1


class TestShareTarget:

    def test_share_plain_text(self, client):
        response = client.get("/admin/share?title=Shared&text=some+selected+text", headers=AUTH)

        assert response.status_code == 200
        assert response.get_json() == {"title": "Shared", "content": "some selected text"}

    @patch("web.share.fetch_page_metadata")
    def test_share_url(self, mock_fetch, client):
        mock_fetch.return_value = {"url": "https://blog.example.com/post", "title": "A Post"}

        response = client.get("/admin/share?text=https://blog.example.com/post?utm=x", headers=AUTH)

        data = response.get_json()
        assert data["title"] == "A Post"
        assert data["content"] == "<a class='u-in-reply-to' href='https://blog.example.com/post'>A Post</a>"

    def test_share_requires_token(self, client):
        assert client.get("/admin/share?text=x").status_code == 401

    def test_share_form_for_browsers(self, client):
        response = client.get("/admin/share?title=Shared&text=some+selected+text",
                              headers={**AUTH, "Accept": BROWSER_ACCEPT})
        body = response.get_data(as_text=True)

        assert response.status_code == 200
        assert response.mimetype == "text/html"
        assert '<form method="post" action="/admin/entries">' in body
        assert 'value="Shared"' in body
        assert ">some selected text</textarea>" in body

    def test_browser_without_session_is_sent_to_sign_in(self, client):
        response = client.get("/admin/share?text=x", headers={"Accept": BROWSER_ACCEPT})

        assert response.status_code == 302
        assert "/admin/login?next=%2Fadmin%2Fshare%3Ftext%3Dx" in response.headers["Location"]


class TestBrowserSession:

    @pytest.fixture
    def cookie_client(self, app):
        return app.test_client(use_cookies=False)

    def session_cookie(self, value=None):
        return {"Cookie": f"{ADMIN_COOKIE}={value or admin_session_value(TOKEN)}"}

    def test_sign_in_form(self, client):
        response = client.get("/admin/login?next=/admin/share")
        body = response.get_data(as_text=True)

        assert response.status_code == 200
        assert 'name="token"' in body
        assert 'name="next" value="/admin/share"' in body

    def test_sign_in_sets_session_cookie(self, client):
        response = client.post("/admin/login", data={"token": TOKEN, "next": "/admin/share?text=x"})

        assert response.status_code == 303
        assert response.headers["Location"].endswith("/admin/share?text=x")
        cookie = response.headers["Set-Cookie"]
        assert cookie.startswith(f"{ADMIN_COOKIE}={admin_session_value(TOKEN)};")
        assert TOKEN not in cookie
        assert "HttpOnly" in cookie
        assert "SameSite=Lax" in cookie
        assert "Secure" in cookie

    def test_wrong_token_is_rejected(self, client):
        response = client.post("/admin/login", data={"token": "wrong"})

        assert response.status_code == 401
        assert b"Wrong token." in response.data
        assert "Set-Cookie" not in response.headers

    def test_offsite_next_is_ignored(self, client):
        response = client.post("/admin/login", data={"token": TOKEN, "next": "//evil.example.com/"})

        assert response.status_code == 303
        assert "evil.example.com" not in response.headers["Location"]

    def test_sign_in_disabled_without_configured_token(self, store, publisher, stream_config, monkeypatch):
        monkeypatch.delenv("STREAM_ADMIN_TOKEN", raising=False)
        stream_config["security"] = {}
        client = create_app(store, publisher, stream_config).test_client()

        assert client.get("/admin/login").status_code == 503
        assert client.post("/admin/login", data={"token": ""}).status_code == 503

    def test_cookie_authorizes_admin_endpoints(self, cookie_client, store):
        response = cookie_client.post("/admin/entries", json={"title": "t", "content": "c"},
                                      headers=self.session_cookie())

        assert response.status_code == 201
        assert store.count() == 1
        assert cookie_client.get("/admin/share?text=x", headers=self.session_cookie()).status_code == 200

    def test_raw_token_is_not_a_session(self, cookie_client, store):
        response = cookie_client.post("/admin/entries", json={"title": "t", "content": "c"},
                                      headers=self.session_cookie(TOKEN))

        assert response.status_code == 401
        assert store.count() == 0

    def test_header_is_checked_before_cookie(self, cookie_client):
        headers = {**self.session_cookie(), "X-Admin-Token": "wrong"}
        assert cookie_client.get("/admin/share?text=x", headers=headers).status_code == 401

    def test_browser_form_post_redirects_to_permalink(self, cookie_client, store):
        response = cookie_client.post(
            "/admin/entries",
            data={"title": "From the phone", "content": "shared"},
            headers={**self.session_cookie(), "Accept": BROWSER_ACCEPT},
        )

        assert response.status_code == 303
        entry = store.list(1, 0)[0]
        assert entry.title == "From the phone"
        assert response.headers["Location"] == f"https://stream.example.com/entry/{entry.id}"


class TestProgressiveWebApp:

    def test_manifest_registers_share_target(self, client):
        response = client.get("/manifest.json")
        data = response.get_json()

        assert response.status_code == 200
        assert response.mimetype == "application/json"
        assert data["name"] == "Test Stream"
        assert data["share_target"] == {
            "action": "/admin/share",
            "method": "GET",
            "params": {"title": "title", "text": "text", "url": "url"},
        }

    def test_service_worker(self, client):
        response = client.get("/service-worker.js")

        assert response.status_code == 200
        assert response.mimetype == "text/javascript"
        assert b'const OFFLINE_URL = "/offline";' in response.data

    def test_offline_page(self, client):
        response = client.get("/offline")

        assert response.status_code == 200
        assert b"You are offline." in response.data

    def test_pages_link_the_manifest(self, client):
        body = client.get("/").get_data(as_text=True)

        assert '<link rel="manifest" href="/manifest.json">' in body
        assert 'navigator.serviceWorker.register("/service-worker.js")' in body


class TestFedsocBridge:

    @pytest.fixture
    def bridge_client(self, store, publisher, stream_config):
        stream_config["fedsoc_bridge"] = "https://fed.brid.gy/"
        return create_app(store, publisher, stream_config).test_client()

    @pytest.mark.parametrize("path", [
        "/.well-known/host-meta",
        "/.well-known/host-meta.xrd",
        "/.well-known/host-meta.jrd",
        "/.well-known/webfinger",
    ])
    def test_redirects_to_bridge(self, bridge_client, path):
        for response in (bridge_client.get(path), bridge_client.head(path)):
            assert response.status_code == 302
            assert response.headers["Location"] == f"https://fed.brid.gy{path}"

    def test_query_is_forwarded(self, bridge_client):
        response = bridge_client.get("/.well-known/webfinger?resource=acct:me@stream.example.com")

        assert response.status_code == 302
        assert response.headers["Location"] == (
            "https://fed.brid.gy/.well-known/webfinger?resource=acct:me@stream.example.com"
        )

    def test_not_found_without_bridge(self, client):
        response = client.get("/.well-known/webfinger?resource=acct:me@stream.example.com")

        assert response.status_code == 404
        assert response.get_json()["status"] == "error"
