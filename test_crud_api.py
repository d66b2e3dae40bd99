"""
CRUD Factory Tests

Validates the resource clients minted by the factory:
1. Standard operations hit the right method and path
2. Optional endpoints exist exactly when their capability is enabled
3. Custom endpoints are bound to the resource path
4. Nested resources address children through the parent id
5. The resource catalog and AuthApi work against the same client
"""

from typing import Optional

import aiohttp
import pytest

from connectors.erp_api import (
    AuthApi,
    BaseEntity,
    BulkCapable,
    BulkUpdate,
    CrudApi,
    ExportCapable,
    ListParams,
    PaginatedResponse,
    RequestFailedError,
    ResourceCapabilities,
    StatsCapable,
    SummaryCapable,
    build_resources,
    create_crud_api,
    create_nested_crud_api,
    custom_action,
    custom_collection_action,
)

EMPLOYEES = "/api/v1/hrms/employees"
PROJECTS = "/api/v1/projects"

EMPTY_PAGE = {"count": 0, "next": None, "previous": None, "results": []}


class Employee(BaseEntity):
    first_name: str
    last_name: Optional[str] = None


class TestCapabilitySurface:
    def test_default_capabilities_expose_plain_crud(self, client):
        api = create_crud_api(EMPLOYEES, client=client)

        for name in ("list", "get", "create", "update", "patch", "delete", "soft_delete"):
            assert callable(getattr(api, name))
        for name in ("stats", "summary", "bulk_create", "bulk_update", "bulk_delete", "export"):
            assert not hasattr(api, name)
        assert type(api) is CrudApi

    def test_stats_only(self, client):
        api = create_crud_api(EMPLOYEES, ResourceCapabilities(has_stats=True), client=client)

        assert isinstance(api, StatsCapable)
        assert not isinstance(api, SummaryCapable)
        assert not isinstance(api, BulkCapable)
        assert not isinstance(api, ExportCapable)

    def test_capabilities_from_mapping(self, client):
        api = create_crud_api(EMPLOYEES, {"has_bulk": True, "has_export": True}, client=client)

        assert isinstance(api, BulkCapable)
        assert isinstance(api, ExportCapable)
        assert not hasattr(api, "stats")

    def test_same_capabilities_share_a_class(self, client):
        caps = ResourceCapabilities(has_summary=True)
        first = create_crud_api(EMPLOYEES, caps, client=client)
        second = create_crud_api("/api/v1/accounting/invoices", caps, client=client)
        assert type(first) is type(second)

    def test_unknown_capability_rejected(self, client):
        with pytest.raises(TypeError):
            create_crud_api(EMPLOYEES, {"has_everything": True}, client=client)

    def test_trailing_slash_normalized(self, client):
        api = create_crud_api(f"{EMPLOYEES}/", client=client)
        assert api.base_path == EMPLOYEES


class TestStandardOperations:
    async def test_get_by_id(self, client, backend):
        backend.route("GET", f"{EMPLOYEES}/abc-123/", (200, {"id": "abc-123", "first_name": "Ada"}))
        api = create_crud_api(EMPLOYEES, client=client)

        record = await api.get("abc-123")

        assert record == {"id": "abc-123", "first_name": "Ada"}
        assert backend.calls[0].authorization == "Bearer access-1"

    async def test_create_posts_mapping_to_collection(self, client, backend):
        backend.route("POST", f"{EMPLOYEES}/", (201, {"id": "e1", "name": "X"}))
        api = create_crud_api(EMPLOYEES, client=client)

        created = await api.create({"name": "X"})

        assert backend.calls[0].json() == {"name": "X"}
        assert created == {"id": "e1", "name": "X"}

    async def test_list_with_filters(self, client, backend):
        backend.route("GET", f"{EMPLOYEES}/", (200, {"count": 41, "next": None, "previous": None, "results": [{"id": 1}]}))
        api = create_crud_api(EMPLOYEES, client=client)

        page = await api.list({"is_active": True, "page": 2, "search": None})

        assert backend.calls[0].query_string == "is_active=true&page=2"
        assert isinstance(page, PaginatedResponse)
        assert page.count == 41
        assert page.results == [{"id": 1}]

    async def test_list_accepts_list_params(self, client, backend):
        backend.route("GET", f"{EMPLOYEES}/", (200, EMPTY_PAGE))
        api = create_crud_api(EMPLOYEES, client=client)

        await api.list(ListParams(page_size=50, ordering="-created_at", department="d1"))

        assert backend.calls[0].query == {
            "page_size": ["50"],
            "ordering": ["-created_at"],
            "department": ["d1"],
        }

    async def test_update_is_put(self, client, backend):
        backend.route("PUT", f"{EMPLOYEES}/e1/", (200, {"id": "e1", "name": "Y"}))
        api = create_crud_api(EMPLOYEES, client=client)

        await api.update("e1", {"name": "Y"})

        assert backend.calls[0].method == "PUT"
        assert backend.calls[0].json() == {"name": "Y"}

    async def test_patch_is_patch(self, client, backend):
        backend.route("PATCH", f"{EMPLOYEES}/e1/", (200, {"id": "e1", "phone": "555"}))
        api = create_crud_api(EMPLOYEES, client=client)

        await api.patch("e1", {"phone": "555"})

        assert backend.calls[0].json() == {"phone": "555"}

    async def test_delete_returns_none(self, client, backend):
        backend.route("DELETE", f"{EMPLOYEES}/e1/", (204, None))
        api = create_crud_api(EMPLOYEES, client=client)

        assert await api.delete("e1") is None
        assert len(backend.calls_to("DELETE", f"{EMPLOYEES}/e1/")) == 1

    async def test_soft_delete_patches_is_active_every_time(self, client, backend):
        backend.route("PATCH", f"{EMPLOYEES}/e1/", (200, {"id": "e1", "is_active": False}))
        api = create_crud_api(EMPLOYEES, client=client)

        await api.soft_delete("e1")
        await api.soft_delete("e1")

        calls = backend.calls_to("PATCH", f"{EMPLOYEES}/e1/")
        assert [c.json() for c in calls] == [{"is_active": False}, {"is_active": False}]

    async def test_missing_record_raises(self, client):
        api = create_crud_api(EMPLOYEES, client=client)

        with pytest.raises(RequestFailedError) as exc_info:
            await api.get("nope")

        assert exc_info.value.status_code == 404
        assert str(exc_info.value) == "Not found."


class TestModels:
    async def test_records_validated_into_model(self, client, backend):
        backend.route("GET", f"{EMPLOYEES}/e1/", (200, {
            "id": "e1",
            "first_name": "Ada",
            "created_at": "2024-05-01T10:00:00Z",
            "employee_number": "EMP-7",
        }))
        api = create_crud_api(EMPLOYEES, model=Employee, client=client)

        employee = await api.get("e1")

        assert isinstance(employee, Employee)
        assert employee.first_name == "Ada"
        assert employee.created_at.year == 2024
        assert employee.employee_number == "EMP-7"

    async def test_page_results_validated(self, client, backend):
        backend.route("GET", f"{EMPLOYEES}/", (200, {
            "count": 1, "next": None, "previous": None,
            "results": [{"id": 7, "first_name": "Grace"}],
        }))
        api = create_crud_api(EMPLOYEES, model=Employee, client=client)

        page = await api.list()

        assert isinstance(page.results[0], Employee)
        assert page.results[0].id == 7

    async def test_create_strips_read_only_fields(self, client, backend):
        backend.route("POST", f"{EMPLOYEES}/", (201, {"id": "e9", "first_name": "Ada"}))
        api = create_crud_api(EMPLOYEES, model=Employee, client=client)

        await api.create(Employee(id="ignored", first_name="Ada"))

        assert backend.calls[0].json() == {"first_name": "Ada"}


class TestOptionalEndpoints:
    async def test_stats_and_summary(self, client, backend):
        backend.route("GET", f"{EMPLOYEES}/stats/", (200, {"total": 12}))
        backend.route("GET", "/api/v1/accounting/invoices/summary/", (200, {"outstanding": "10.00"}))
        employees = create_crud_api(EMPLOYEES, ResourceCapabilities(has_stats=True), client=client)
        invoices = create_crud_api(
            "/api/v1/accounting/invoices", ResourceCapabilities(has_summary=True), client=client,
        )

        assert await employees.stats() == {"total": 12}
        assert await invoices.summary() == {"outstanding": "10.00"}

    async def test_bulk_operations(self, client, backend):
        backend.route("POST", f"{EMPLOYEES}/bulk_create/", (201, [{"id": 1}, {"id": 2}]))
        backend.route("POST", f"{EMPLOYEES}/bulk_update/", (200, [{"id": 1}]))
        backend.route("POST", f"{EMPLOYEES}/bulk_delete/", (204, None))
        api = create_crud_api(EMPLOYEES, ResourceCapabilities(has_bulk=True), client=client)

        created = await api.bulk_create([{"first_name": "A"}, {"first_name": "B"}])
        await api.bulk_update([BulkUpdate(1, {"first_name": "C"}), {"id": 2, "data": {"first_name": "D"}}])
        assert await api.bulk_delete([1, 2]) is None

        assert created == [{"id": 1}, {"id": 2}]
        assert backend.calls[0].json() == {"items": [{"first_name": "A"}, {"first_name": "B"}]}
        assert backend.calls[1].json() == {"items": [
            {"id": 1, "data": {"first_name": "C"}},
            {"id": 2, "data": {"first_name": "D"}},
        ]}
        assert backend.calls[2].json() == {"ids": [1, 2]}

    async def test_export_returns_raw_bytes(self, client, backend):
        backend.route("GET", f"{EMPLOYEES}/export/", (200, b"id;name\n1;Ada\n"))
        api = create_crud_api(EMPLOYEES, ResourceCapabilities(has_export=True), client=client)

        data = await api.export({"is_active": False})

        assert data == b"id;name\n1;Ada\n"
        assert backend.calls[0].query_string == "is_active=false"

    async def test_export_failure_raises(self, client, backend):
        backend.route("GET", f"{EMPLOYEES}/export/", (403, {"detail": "Forbidden"}))
        api = create_crud_api(EMPLOYEES, ResourceCapabilities(has_export=True), client=client)

        with pytest.raises(RequestFailedError, match="Forbidden"):
            await api.export()


class TestCustomEndpoints:
    async def test_custom_endpoints_bound_to_base_path(self, client, backend):
        base = "/api/v1/accounting/invoices"
        backend.route("POST", f"{base}/i1/void/", (200, {"status": "void"}))
        backend.route("GET", f"{base}/overdue/", (200, []))
        api = create_crud_api(
            base,
            custom_endpoints={
                "void": custom_action("void", payload_key="reason"),
                "overdue": custom_collection_action("overdue"),
            },
            client=client,
        )

        assert await api.void("i1", "duplicate entry") == {"status": "void"}
        assert await api.overdue(days=30) == []

        assert backend.calls[0].json() == {"reason": "duplicate entry"}
        assert backend.calls[1].query_string == "days=30"

    async def test_plain_factory_receives_client_and_path(self, client):
        seen = {}

        def factory(http_client, base_path):
            seen.update(client=http_client, base_path=base_path)
            return lambda: base_path

        api = create_crud_api(EMPLOYEES, custom_endpoints={"where": factory}, client=client)

        assert api.where() == EMPLOYEES
        assert seen == {"client": client, "base_path": EMPLOYEES}

    def test_custom_endpoint_cannot_shadow_generated_method(self, client):
        with pytest.raises(ValueError, match="get"):
            create_crud_api(EMPLOYEES, custom_endpoints={"get": custom_collection_action("get")}, client=client)

        with pytest.raises(ValueError, match="stats"):
            create_crud_api(
                EMPLOYEES,
                ResourceCapabilities(has_stats=True),
                custom_endpoints={"stats": custom_collection_action("stats")},
                client=client,
            )


class TestNestedResources:
    async def test_nested_paths(self, client, backend):
        tasks_path = f"{PROJECTS}/p1/tasks/"
        backend.route("GET", tasks_path, (200, EMPTY_PAGE))
        backend.route("GET", f"{tasks_path}t1/", (200, {"id": "t1"}))
        backend.route("POST", tasks_path, (201, {"id": "t2"}))
        backend.route("PATCH", f"{tasks_path}t1/", (200, {"id": "t1", "status": "done"}))
        backend.route("DELETE", f"{tasks_path}t1/", (204, None))
        tasks = create_nested_crud_api(PROJECTS, "tasks", client=client)

        await tasks.list("p1", {"status": "open"})
        await tasks.get("p1", "t1")
        await tasks.create("p1", {"title": "Write docs"})
        await tasks.update("p1", "t1", {"status": "done"})
        await tasks.delete("p1", "t1")

        assert [(c.method, c.path) for c in backend.calls] == [
            ("GET", tasks_path),
            ("GET", f"{tasks_path}t1/"),
            ("POST", tasks_path),
            ("PATCH", f"{tasks_path}t1/"),
            ("DELETE", f"{tasks_path}t1/"),
        ]
        assert backend.calls[0].query_string == "status=open"
        assert backend.calls[3].json() == {"status": "done"}

    async def test_nested_refresh_applies(self, client, backend, token_store):
        tasks_path = f"{PROJECTS}/p1/tasks/"
        backend.route("GET", tasks_path, (401, {"detail": "expired"}), (200, EMPTY_PAGE))
        backend.route("POST", "/api/v1/auth/token/refresh/", (200, {"access": "access-2"}))
        tasks = create_nested_crud_api(PROJECTS, "tasks", client=client)

        page = await tasks.list("p1")

        assert page.count == 0
        assert token_store.get_access_token() == "access-2"


class TestResourceCatalog:
    def test_catalog_capabilities(self, client):
        resources = build_resources(client)

        assert isinstance(resources.companies, StatsCapable)
        assert isinstance(resources.employees, BulkCapable)
        assert isinstance(resources.employees, ExportCapable)
        assert isinstance(resources.invoices, SummaryCapable)
        assert not isinstance(resources.positions, StatsCapable)
        assert callable(resources.invoices.mark_sent)
        assert "project_tasks" in resources.by_name()

    async def test_catalog_custom_actions(self, client, backend):
        backend.route("POST", "/api/v1/hrms/leave-requests/l1/reject/", (200, {"status": "rejected"}))
        backend.route("GET", "/api/v1/accounting/accounts/by-code/4000/", (200, {"code": "4000"}))
        backend.route("GET", "/api/v1/business/companies/search/", (200, [{"id": "c1"}]))
        resources = build_resources(client)

        await resources.leave_requests.reject("l1", "Overlaps with sprint")
        assert await resources.accounts.by_code("4000") == {"code": "4000"}
        assert await resources.companies.search("acme") == [{"id": "c1"}]

        assert backend.calls[0].json() == {"reason": "Overlaps with sprint"}
        assert backend.calls[2].query == {"q": ["acme"]}

    async def test_receipt_upload(self, client, backend):
        path = "/api/v1/accounting/expenses/x1/upload-receipt/"
        backend.route("POST", path, (200, {"id": "x1"}))
        resources = build_resources(client)

        form = aiohttp.FormData()
        form.add_field("receipt", b"image-bytes", filename="receipt.png", content_type="image/png")
        assert await resources.expenses.upload_receipt("x1", form) == {"id": "x1"}
        assert backend.calls[0].content_type.startswith("multipart/form-data")


class TestAuthApi:
    async def test_login_stores_tokens_without_bearer(self, client, backend, token_store):
        token_store.clear_tokens()
        backend.route("POST", "/api/v1/auth/token/", (200, {"access": "new-access", "refresh": "new-refresh"}))
        auth = AuthApi(client)

        tokens = await auth.login("jane@example.com", "secret")

        assert tokens.access == "new-access"
        assert auth.is_authenticated() is True
        assert auth.get_access_token() == "new-access"
        assert token_store.get_refresh_token() == "new-refresh"
        call = backend.calls[0]
        assert call.authorization is None
        assert call.json() == {"email": "jane@example.com", "password": "secret"}

    async def test_google_auth_url_is_anonymous(self, client, backend):
        backend.route("GET", "/api/v1/auth/google/url/", (200, {"auth_url": "https://accounts.google.com/o/oauth2/auth?x=1"}))
        auth = AuthApi(client)

        assert await auth.google_auth_url() == "https://accounts.google.com/o/oauth2/auth?x=1"
        assert backend.calls[0].authorization is None

    async def test_google_callback_stores_tokens(self, client, backend, token_store):
        token_store.clear_tokens()
        backend.route("POST", "/api/v1/auth/google/callback/", (200, {"access": "g-access", "refresh": "g-refresh"}))
        auth = AuthApi(client)

        tokens = await auth.google_callback("code-123", state="xyz")
        await auth.google_callback("code-456")

        assert tokens.refresh == "g-refresh"
        assert token_store.get_access_token() == "g-access"
        assert token_store.get_refresh_token() == "g-refresh"
        calls = backend.calls_to("POST", "/api/v1/auth/google/callback/")
        assert calls[0].authorization is None
        assert calls[0].json() == {"code": "code-123", "state": "xyz"}
        assert calls[1].json() == {"code": "code-456"}

    async def test_bad_credentials_do_not_refresh(self, client, backend, token_store):
        backend.route("POST", "/api/v1/auth/token/", (401, {"detail": "No active account found"}))
        auth = AuthApi(client)

        with pytest.raises(RequestFailedError, match="No active account found"):
            await auth.login("jane@example.com", "wrong")

        assert backend.calls_to("POST", "/api/v1/auth/token/refresh/") == []
        assert token_store.get_access_token() == "access-1"

    async def test_current_user_and_logout(self, client, backend):
        backend.route("GET", "/api/v1/users/me/", (200, {"email": "jane@example.com"}))
        auth = AuthApi(client)

        assert await auth.current_user() == {"email": "jane@example.com"}
        assert backend.calls[0].authorization == "Bearer access-1"

        auth.logout()
        assert auth.is_authenticated() is False

    async def test_register_is_anonymous(self, client, backend):
        backend.route("POST", "/api/v1/users/register/", (201, {"id": "u1"}))
        auth = AuthApi(client)

        assert await auth.register({"email": "new@example.com", "password": "pw"}) == {"id": "u1"}
        assert backend.calls[0].authorization is None

    def test_set_tokens(self, client):
        auth = AuthApi(client)
        auth.set_tokens("sso-access", "sso-refresh")
        assert client.token_store.get_refresh_token() == "sso-refresh"
