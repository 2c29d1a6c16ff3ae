"""Tests for dashsync.resources against a scripted client."""

import asyncio

import httpx

from dashsync.batch import PARTIAL_FAILURE_MESSAGE
from dashsync.config import SyncSettings
from dashsync.errors import TransportError
from dashsync.resources import FILES, MODELS, Endpoints, SyncContext
from dashsync.sync.base import ApiResult
from dashsync.sync.http import HttpResourceClient
from fakes import FakeClient, FakeClock, settle

SETTINGS = SyncSettings(pacing_delay=0)

FILE_LIST = [{"id": "f1", "name": "a.pdf"}, {"id": "f2", "name": "b.pdf"}, {"id": "f3", "name": "c.pdf"}]


def _context(client: FakeClient, clock: FakeClock) -> SyncContext:
    return SyncContext(client, SETTINGS, clock=clock)


class TestEndpoints:
    def test_item_path_quotes_id(self):
        assert MODELS.item_path("m 1/x") == "/models/m%201%2Fx"

    def test_defaults(self):
        ep = Endpoints(name="things", noun="thing", list="/things", item="/things/{id}")
        assert ep.bulk_delete is None
        assert ep.bulk_key == "ids"
        assert FILES.bulk_key == "file_ids"


# ---------------------------------------------------------------------------
# Fetch / mutate
# ---------------------------------------------------------------------------


class TestManagedCollection:
    def test_paged_fetch_sends_default_params(self, client: FakeClient, clock: FakeClock):
        client.route("GET", "/models", ApiResult.ok({"models": [{"id": "m1"}], "total": 1}))
        ctx = _context(client, clock)

        asyncio.run(ctx.models.fetch())
        assert ctx.models.items == ({"id": "m1"},)
        assert client.calls[0].params == {"skip": 0, "limit": 50}

    def test_unpaged_fetch_sends_no_params(self, client: FakeClient, clock: FakeClock):
        client.route("GET", "/file/list", ApiResult.ok({"files": FILE_LIST}))
        ctx = _context(client, clock)

        asyncio.run(ctx.files.fetch())
        assert len(ctx.files.items) == 3
        assert client.calls[0].params is None

    def test_fetch_failure_sets_error(self, client: FakeClient, clock: FakeClock):
        client.route("GET", "/credentials", TransportError("down"))
        ctx = _context(client, clock)

        asyncio.run(ctx.credentials.fetch())
        assert ctx.credentials.error == "Failed to fetch credentials"
        ctx.credentials.clear_error()
        assert ctx.credentials.error is None

    def test_update_puts_patch_then_refetches(self, client: FakeClient, clock: FakeClock):
        client.route(
            "GET",
            "/models",
            ApiResult.ok([{"id": "m1", "is_active": True}]),
            ApiResult.ok([{"id": "m1", "is_active": False, "updated": True}]),
        )
        client.route("PUT", "/models/m1", ApiResult.ok({"id": "m1", "is_active": False}))
        ctx = _context(client, clock)

        async def main():
            await ctx.models.fetch()
            return await ctx.models.update("m1", {"is_active": False})

        outcome = asyncio.run(main())
        assert outcome.ok is True
        assert client.calls_to("PUT", "/models/m1")[0].body == {"is_active": False}
        assert ctx.models.items == ({"id": "m1", "is_active": False, "updated": True},)

    def test_failed_delete_restores_and_reports(self, client: FakeClient, clock: FakeClock):
        client.route("GET", "/credentials", ApiResult.ok([{"id": "c1"}, {"id": "c2"}]))
        client.route("DELETE", "/credentials/c1", ApiResult.fail("Credential is used by 2 models", status=409))
        ctx = _context(client, clock)

        async def main():
            await ctx.credentials.fetch()
            return await ctx.credentials.delete("c1")

        outcome = asyncio.run(main())
        assert outcome.ok is False
        assert ctx.credentials.items == ({"id": "c1"}, {"id": "c2"})
        assert ctx.credentials.error == "Credential is used by 2 models"

    def test_create_posts_body(self, client: FakeClient, clock: FakeClock):
        client.route("GET", "/knowledge-stores", ApiResult.ok([]), ApiResult.ok([{"id": "ks1", "name": "docs"}]))
        client.route("POST", "/knowledge-stores", ApiResult.ok({"id": "ks1", "name": "docs"}))
        ctx = _context(client, clock)

        async def main():
            await ctx.knowledge_stores.fetch()
            return await ctx.knowledge_stores.create({"name": "docs"})

        outcome = asyncio.run(main())
        assert outcome.item_id == "ks1"
        assert client.calls_to("POST", "/knowledge-stores")[0].body == {"name": "docs"}
        assert ctx.knowledge_stores.items == ({"id": "ks1", "name": "docs"},)

    def test_table_view(self, client: FakeClient, clock: FakeClock):
        client.route(
            "GET",
            "/models",
            ApiResult.ok([{"id": "m1", "type": "chat", "name": "A"}, {"id": "m2", "type": "embedding", "name": "B"}]),
        )
        ctx = _context(client, clock)
        asyncio.run(ctx.models.fetch())

        view = ctx.models.table_view(filters={"type": "embedding"})
        assert view["id"].to_list() == ["m2"]


# ---------------------------------------------------------------------------
# Batch deletion
# ---------------------------------------------------------------------------


class TestDeleteMany:
    def test_files_use_bulk_endpoint(self, client: FakeClient, clock: FakeClock):
        client.route("GET", "/file/list", ApiResult.ok(FILE_LIST))
        client.route(
            "POST",
            "/file/batch/delete",
            ApiResult.ok({"successful": ["f1"], "failed": [{"file_id": "f2", "error": "locked"}]}),
        )
        ctx = _context(client, clock)

        async def main():
            await ctx.files.fetch()
            return await ctx.files.delete_many(["f1", "f2"])

        outcome = asyncio.run(main())
        assert client.calls_to("POST", "/file/batch/delete")[0].body == {"file_ids": ["f1", "f2"]}
        assert outcome.succeeded_ids == {"f1"}
        assert [r["id"] for r in ctx.files.items] == ["f2", "f3"]
        assert ctx.files.error == PARTIAL_FAILURE_MESSAGE

    def test_full_success_clears_error(self, client: FakeClient, clock: FakeClock):
        client.route("GET", "/file/list", ApiResult.ok(FILE_LIST))
        client.route("POST", "/file/batch/delete", ApiResult.ok({"successful": ["f1", "f3"], "failed": []}))
        ctx = _context(client, clock)

        async def main():
            await ctx.files.fetch()
            ctx.files.store.report_error("stale message")
            await ctx.files.delete_many(["f1", "f3"])

        asyncio.run(main())
        assert ctx.files.error is None
        assert [r["id"] for r in ctx.files.items] == ["f2"]

    def test_without_bulk_endpoint_deletes_one_by_one(self, client: FakeClient, clock: FakeClock):
        client.route("GET", "/credentials", ApiResult.ok([{"id": "c1"}, {"id": "c2"}]))
        client.route("DELETE", "/credentials/c1", ApiResult.ok(None))
        client.route("DELETE", "/credentials/c2", ApiResult.ok(None))
        ctx = _context(client, clock)
        progress = []

        async def main():
            await ctx.credentials.fetch()
            return await ctx.credentials.delete_many(["c1", "c2"], progress.append)

        outcome = asyncio.run(main())
        assert outcome.succeeded_ids == {"c1", "c2"}
        assert [p.completed for p in progress] == [1, 2]
        assert ctx.credentials.items == ()


# ---------------------------------------------------------------------------
# Resource-specific operations
# ---------------------------------------------------------------------------


class TestFileRename:
    def test_rename_sends_query_param(self, client: FakeClient, clock: FakeClock):
        client.route("GET", "/file/list", ApiResult.ok(FILE_LIST))
        client.route("PUT", "/file/rename/f1", ApiResult.ok({"id": "f1", "name": "z.pdf"}))
        ctx = _context(client, clock)

        async def main():
            await ctx.files.fetch()
            return await ctx.files.rename("f1", "z.pdf")

        outcome = asyncio.run(main())
        assert outcome.ok is True
        assert client.calls_to("PUT", "/file/rename/f1")[0].params == {"new_name": "z.pdf"}

    def test_rename_rollback(self, client: FakeClient, clock: FakeClock):
        client.route("GET", "/file/list", ApiResult.ok(FILE_LIST))
        client.route("PUT", "/file/rename/f1", ApiResult.fail("locked"))
        ctx = _context(client, clock)

        async def main():
            await ctx.files.fetch()
            await ctx.files.rename("f1", "new.txt")

        asyncio.run(main())
        assert ctx.files.store.get("f1")["name"] == "a.pdf"
        assert ctx.files.error == "locked"


class TestKnowledgeStoreVectors:
    def test_scroller_posts_limit_and_token(self, client: FakeClient, clock: FakeClock):
        client.route(
            "POST",
            "/knowledge-stores/ks1/scroll",
            ApiResult.ok({"points": [{"id": "p1"}], "scroll_id": "abc", "has_more": True}),
            ApiResult.ok({"points": [{"id": "p2"}], "scroll_id": None, "has_more": False}),
        )
        ctx = _context(client, clock)
        browser = ctx.knowledge_stores.browser("ks1")

        async def main():
            await browser.load_first()
            await browser.load_more()

        asyncio.run(main())
        bodies = [c.body for c in client.calls_to("POST", "/knowledge-stores/ks1/scroll")]
        assert bodies == [{"limit": 100, "scroll_id": None}, {"limit": 100, "scroll_id": "abc"}]
        assert [p["id"] for p in browser.points] == ["p1", "p2"]
        assert browser.has_more is False

    def test_vector_deleter_bulk(self, client: FakeClient, clock: FakeClock):
        client.route(
            "POST",
            "/knowledge-stores/ks1/vectors/delete",
            ApiResult.ok({"deleted_count": 1, "point_ids": ["p1"]}),
        )
        ctx = _context(client, clock)

        outcome = asyncio.run(ctx.knowledge_stores.vector_deleter("ks1").run(["p1", "p2"]))
        assert outcome.used_bulk is True
        assert outcome.succeeded_ids == {"p1"}
        assert outcome.failed_ids == {"p2"}

    def test_vector_deleter_single_fallback(self, client: FakeClient, clock: FakeClock):
        def answer(body, params):
            ids = body["point_ids"]
            if len(ids) > 1:
                return ApiResult.fail("Too many points")
            return ApiResult.ok({"deleted_count": 1, "point_ids": ids})

        client.route("POST", "/knowledge-stores/ks1/vectors/delete", answer)
        ctx = _context(client, clock)

        outcome = asyncio.run(ctx.knowledge_stores.vector_deleter("ks1").run(["p1", "p2"]))
        assert outcome.used_bulk is False
        assert outcome.succeeded_ids == {"p1", "p2"}


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


class TestSyncContext:
    def test_collections(self, client: FakeClient, clock: FakeClock):
        ctx = _context(client, clock)
        assert set(ctx.collections) == {"knowledge_stores", "models", "credentials", "files"}

    def test_reset_drops_every_cache(self, client: FakeClient, clock: FakeClock):
        client.route("GET", "/file/list", ApiResult.ok(FILE_LIST))
        ctx = _context(client, clock)
        asyncio.run(ctx.files.fetch())

        ctx.reset()
        assert ctx.files.items == ()

    def test_from_settings_over_http(self):
        def handler(request):
            assert request.url.path == "/v2/models"
            return httpx.Response(200, json={"success": True, "data": {"models": [{"id": "m1"}]}})

        settings = SyncSettings(base_url="http://api.test", api_prefix="/v2")
        ctx = SyncContext.from_settings(settings, transport=httpx.MockTransport(handler))
        assert isinstance(ctx.client, HttpResourceClient)

        async def main():
            async with ctx:
                await ctx.models.fetch()
                return ctx.models.items

        assert asyncio.run(main()) == ({"id": "m1"},)

    def test_vector_browser_recovers_after_undecodable_page(self):
        responses = [
            httpx.Response(200, headers={"content-encoding": "gzip"}, content=b"not gzip"),
            httpx.Response(200, json={"points": [{"id": "p1"}], "scroll_id": "abc", "has_more": True}),
        ]

        def handler(request):
            return responses.pop(0)

        ctx = SyncContext.from_settings(SyncSettings(), transport=httpx.MockTransport(handler))
        browser = ctx.knowledge_stores.browser("ks1")

        async def main():
            async with ctx:
                assert await browser.load_first() is False
                assert browser.error == "Failed to fetch scroll data"
                return await browser.load_first()

        assert asyncio.run(main()) is True
        assert [p["id"] for p in browser.points] == ["p1"]
        assert responses == []

    def test_aclose_during_fetch_does_not_raise(self, client: FakeClient, clock: FakeClock):
        async def main():
            gate = asyncio.get_running_loop().create_future()

            async def slow_list(body, params):
                return await gate

            client.route("GET", "/file/list", slow_list)
            ctx = _context(client, clock)
            waiter = asyncio.ensure_future(ctx.files.fetch())
            await settle()
            await ctx.aclose()
            gate.set_result(ApiResult.ok(FILE_LIST))
            return await waiter, ctx

        snapshot, ctx = asyncio.run(main())
        assert snapshot.items == ()
        assert ctx.files.items == ()
        assert ctx.files.error is None
