import base64
import json
import time
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from conftest import FakeStorage

from agent_server.errors import IntegrationError, StorageError
from agent_server.toolservers import github, gmail, google_calendar, memory, outlook
from agent_server.toolservers.storage import StorageClient


async def call(server, name, arguments=None):
    response = await server.handle({"jsonrpc": "2.0", "id": 1, "method": "tools/call", "params": {"name": name, "arguments": arguments or {}}})
    if "error" in response:
        return response["error"]
    return response["result"]["content"][0]["text"]


class TestStorageClient:
    @pytest.mark.asyncio
    async def test_query_posts_path_and_args(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"status": "success", "value": [{"id": 1}]})

        storage = StorageClient("https://storage.test/", "key-1", "u1", transport=httpx.MockTransport(handler))
        assert await storage.query("memory:search", {"q": "x"}) == [{"id": 1}]
        assert seen == {
            "url": "https://storage.test/api/query",
            "auth": "Convex key-1",
            "body": {"path": "memory:search", "args": {"q": "x"}, "format": "json"},
        }

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, json={"status": "error", "errorMessage": "no such function"})
        )
        storage = StorageClient("https://storage.test", transport=transport)
        with pytest.raises(StorageError, match="no such function"):
            await storage.mutation("memory:nope")

    @pytest.mark.asyncio
    async def test_unconfigured(self):
        with pytest.raises(StorageError, match="CONVEX_URL"):
            await StorageClient.from_env({}).query("memory:search")


class TestMemoryServer:
    @pytest.mark.asyncio
    async def test_save(self, fake_storage):
        server = memory.create_server(storage=fake_storage)
        text = await call(
            server,
            "memory_save",
            {"tier": "persistent", "category": "preference", "title": "Coffee", "content": "Espresso", "importance": 8},
        )
        assert text == 'Memory saved: "Coffee" (persistent, importance 8)'
        kind, path, args = fake_storage.calls[0]
        assert (kind, path) == ("mutation", "memory:save")
        assert args["userId"] == "user-1"
        assert args["source"] == "agent"

    @pytest.mark.asyncio
    async def test_save_defaults_importance(self, fake_storage):
        server = memory.create_server(storage=fake_storage)
        text = await call(server, "memory_save", {"tier": "session", "category": "note", "title": "T", "content": "C"})
        assert text.endswith("(session, importance 5)")

    @pytest.mark.asyncio
    async def test_search_empty_and_results(self, fake_storage):
        server = memory.create_server(storage=fake_storage)
        assert await call(server, "memory_search", {"query": "coffee"}) == "No memories found for that query."
        fake_storage.results["memory:search"] = [
            {"tier": "persistent", "category": "preference", "title": "Coffee", "content": "Espresso"}
        ]
        assert await call(server, "memory_search", {"query": "coffee"}) == "[persistent/preference] **Coffee**: Espresso"


class TestGmail:
    def test_encode_message_is_unpadded_base64url(self):
        raw = gmail.encode_message("a@example.com", "Hi", "Body text", cc="b@example.com")
        assert "=" not in raw
        decoded = gmail.decode_base64url(raw)
        assert decoded.startswith("To: a@example.com\r\nCc: b@example.com\r\nSubject: Hi")
        assert decoded.endswith("\r\n\r\nBody text")

    def test_extract_body_prefers_payload_then_plain_part(self):
        data = base64.urlsafe_b64encode(b"plain body").decode().rstrip("=")
        assert gmail.extract_body({"body": {"data": data}}) == "plain body"
        payload = {"parts": [{"mimeType": "text/html", "body": {"data": "PGI+"}}, {"mimeType": "text/plain", "body": {"data": data}}]}
        assert gmail.extract_body(payload) == "plain body"
        assert gmail.extract_body({"parts": []}) == "(no readable body)"

    @pytest.mark.asyncio
    async def test_list_recent_summarizes_messages(self):
        storage = FakeStorage(tokens={"gmail": {"accessToken": "ya29"}})
        requests = []

        def handler(request: httpx.Request):
            requests.append(request)
            assert request.headers["Authorization"] == "Bearer ya29"
            if request.url.path.endswith("/messages"):
                return httpx.Response(200, json={"messages": [{"id": "m1"}]})
            return httpx.Response(
                200,
                json={
                    "id": "m1",
                    "snippet": "See you then",
                    "payload": {"headers": [{"name": "From", "value": "ada@example.com"}, {"name": "Subject", "value": "Lunch"}]},
                },
            )

        server = gmail.create_server(storage=storage, transport=httpx.MockTransport(handler))
        text = await call(server, "gmail_list_recent", {"maxResults": 500})
        assert "From: ada@example.com" in text
        assert "Subject: Lunch" in text
        assert requests[0].url.params["maxResults"] == "50"
        assert requests[0].url.params["labelIds"] == "INBOX"
        assert requests[1].url.params["format"] == "metadata"

    @pytest.mark.asyncio
    async def test_not_connected(self):
        server = gmail.create_server(storage=FakeStorage(), transport=httpx.MockTransport(lambda r: httpx.Response(500)))
        error = await call(server, "gmail_search", {"query": "is:unread"})
        assert error["message"] == "Gmail not connected. Please connect Gmail in Settings."

    @pytest.mark.asyncio
    async def test_api_error_is_reported(self):
        storage = FakeStorage(tokens={"gmail": {"accessToken": "expired"}})
        transport = httpx.MockTransport(lambda request: httpx.Response(401, text="invalid credentials"))
        server = gmail.create_server(storage=storage, transport=transport)
        error = await call(server, "gmail_get_message", {"messageId": "m1"})
        assert error["message"] == "Gmail API error 401: invalid credentials"


class TestCalendar:
    def test_find_free_slots(self):
        day = datetime(2026, 3, 2, tzinfo=timezone.utc)
        start, end = day.replace(hour=8), day.replace(hour=18)
        busy = [
            (day.replace(hour=9), day.replace(hour=10)),
            (day.replace(hour=7), day.replace(hour=8, minute=30)),
            (day.replace(hour=10, minute=15), day.replace(hour=17, minute=30)),
        ]
        slots = google_calendar.find_free_slots(busy, start, end, timedelta(minutes=30))
        assert slots == [
            (day.replace(hour=8, minute=30), day.replace(hour=9)),
            (day.replace(hour=17, minute=30), day.replace(hour=18)),
        ]

    def test_find_free_slots_empty_day(self):
        day = datetime(2026, 3, 2, tzinfo=timezone.utc)
        slots = google_calendar.find_free_slots([], day.replace(hour=8), day.replace(hour=18), timedelta(hours=1))
        assert slots == [(day.replace(hour=8), day.replace(hour=18))]

    def test_format_event(self):
        text = google_calendar.format_event(
            {
                "id": "e1",
                "summary": "Standup",
                "start": {"dateTime": "2026-03-02T09:00:00Z"},
                "end": {"dateTime": "2026-03-02T09:15:00Z"},
                "attendees": [{"email": "a@example.com"}],
            }
        )
        assert text == "**Standup**\nTime: 2026-03-02 09:00 (15 min)\nAttendees: a@example.com\nID: e1"


class TestGitHub:
    @pytest.mark.asyncio
    async def test_list_issues_skips_pull_requests(self):
        storage = FakeStorage(tokens={"github": {"accessToken": "gho"}})

        def handler(request: httpx.Request):
            assert request.url.path == "/repos/octo/app/issues"
            return httpx.Response(
                200,
                json=[
                    {"number": 1, "title": "Bug", "state": "open", "user": {"login": "ada"}, "labels": [], "html_url": "u1", "created_at": "2026-03-01T00:00:00Z"},
                    {"number": 2, "title": "PR", "state": "open", "pull_request": {}, "user": {"login": "bob"}, "labels": [], "html_url": "u2", "created_at": "2026-03-01T00:00:00Z"},
                ],
            )

        server = github.create_server(storage=storage, transport=httpx.MockTransport(handler))
        text = await call(server, "github_list_issues", {"owner": "octo", "repo": "app"})
        assert "Bug" in text
        assert "#2" not in text


class TestOutlookTokens:
    @pytest.mark.asyncio
    async def test_fresh_stored_token(self):
        storage = FakeStorage(tokens={"outlook": {"accessToken": "at", "expiresAt": (time.time() + 3600) * 1000}})
        assert await outlook.GraphTokenSource(storage, environ={})() == "at"

    @pytest.mark.asyncio
    async def test_expiring_token_is_refreshed(self):
        storage = FakeStorage(
            tokens={"outlook": {"accessToken": "old", "refreshToken": "rt", "expiresAt": time.time() * 1000}}
        )
        forms = []

        def handler(request: httpx.Request):
            forms.append(dict(httpx.QueryParams(request.content.decode())))
            return httpx.Response(200, json={"access_token": "new"})

        source = outlook.GraphTokenSource(
            storage,
            environ={"MS_TENANT_ID": "t", "MS_CLIENT_ID": "c", "MS_CLIENT_SECRET": "s"},
            transport=httpx.MockTransport(handler),
        )
        assert await source() == "new"
        assert forms[0]["grant_type"] == "refresh_token"
        assert forms[0]["refresh_token"] == "rt"

    @pytest.mark.asyncio
    async def test_not_connected_without_app_credentials(self):
        with pytest.raises(IntegrationError, match="Outlook not connected"):
            await outlook.GraphTokenSource(FakeStorage(), environ={})()
