"""Generic CRUD client factory.

Derives a uniform resource client from a base path and a capability set, so
each backend resource needs one line instead of a hand-written client:

    employees = create_crud_api(
        "/api/v1/hrms/employees",
        ResourceCapabilities(has_stats=True, has_bulk=True),
        client=client,
    )
    page = await employees.list({"is_active": True, "page": 2})
    employee = await employees.get("abc-123")
    stats = await employees.stats()

Optional endpoints are mixed in at construction time; a client built without
``has_stats`` has no ``stats`` attribute at all.
"""

from functools import lru_cache
from typing import (
    Any,
    Callable,
    Dict,
    Generic,
    Iterable,
    Mapping,
    Optional,
    Protocol,
    Type,
    TypeVar,
    Union,
    runtime_checkable,
)

from pydantic import BaseModel

from connectors.erp_api.api_client import HttpClient, get_default_client
from connectors.erp_api.api_models import (
    READ_ONLY_FIELDS,
    BulkUpdate,
    ListParams,
    PaginatedResponse,
    ResourceCapabilities,
)
from core.observability.logging import with_correlation

T = TypeVar("T")

Payload = Union[BaseModel, Mapping[str, Any]]
ListParamsLike = Union[ListParams, Mapping[str, Any], None]
EndpointFactory = Callable[[HttpClient, str], Callable[..., Any]]


def dump_payload(data: Payload, exclude: Iterable[str] = (), exclude_unset: bool = False) -> Dict[str, Any]:
    """Turn a model or mapping into a JSON-ready dict.

    ``exclude`` only applies to models; mappings are sent as given.
    """
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json", exclude=set(exclude), exclude_unset=exclude_unset)
    return dict(data)


def _query(params: ListParamsLike) -> Optional[Dict[str, Any]]:
    if params is None:
        return None
    if isinstance(params, ListParams):
        return params.to_query()
    return dict(params)


class _ResourceBase(Generic[T]):
    """Shared plumbing for flat and nested resource clients."""

    def __init__(self, client: HttpClient, model: Optional[Type[T]] = None):
        self._client = client
        self.model = model

    @property
    def client(self) -> HttpClient:
        return self._client

    @property
    def resource_name(self) -> str:
        raise NotImplementedError

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        body: Optional[Any] = None,
    ) -> Any:
        with with_correlation(resource=self.resource_name):
            return await self._client.request(method, path, params=params, body=body)

    def _parse(self, data: Any) -> Any:
        if self.model is None or data is None:
            return data
        return self.model.model_validate(data)

    def _parse_many(self, data: Any) -> Any:
        if isinstance(data, list):
            return [self._parse(item) for item in data]
        return data

    def _parse_page(self, data: Any) -> PaginatedResponse:
        item_type = self.model if self.model is not None else Dict[str, Any]
        return PaginatedResponse[item_type].model_validate(data)


# =============================================================================
# Standard CRUD surface
# =============================================================================

class CrudApi(_ResourceBase[T]):
    """Client for one backend resource addressed as ``base_path/`` and ``base_path/{id}/``."""

    def __init__(self, client: HttpClient, base_path: str, model: Optional[Type[T]] = None):
        super().__init__(client, model)
        self.base_path = base_path.rstrip("/")

    @property
    def resource_name(self) -> str:
        return self.base_path.rsplit("/", 1)[-1]

    def _collection_path(self) -> str:
        return f"{self.base_path}/"

    def _item_path(self, entity_id: Union[str, int]) -> str:
        return f"{self.base_path}/{entity_id}/"

    def _action_path(self, action: str) -> str:
        return f"{self.base_path}/{action}/"

    async def list(self, params: ListParamsLike = None) -> PaginatedResponse:
        """List records; ``None`` parameters are left out of the query."""
        data = await self._request("GET", self._collection_path(), params=_query(params))
        return self._parse_page(data)

    async def get(self, entity_id: Union[str, int]) -> Any:
        data = await self._request("GET", self._item_path(entity_id))
        return self._parse(data)

    async def create(self, data: Payload) -> Any:
        """Create a record.

        Identifier and timestamp fields are dropped from model payloads;
        mappings are sent unchanged.
        """
        body = dump_payload(data, exclude=READ_ONLY_FIELDS, exclude_unset=True)
        return self._parse(await self._request("POST", self._collection_path(), body=body))

    async def update(self, entity_id: Union[str, int], data: Payload) -> Any:
        """Replace a record (PUT)."""
        body = dump_payload(data, exclude=READ_ONLY_FIELDS)
        return self._parse(await self._request("PUT", self._item_path(entity_id), body=body))

    async def patch(self, entity_id: Union[str, int], data: Payload) -> Any:
        """Partially update a record (PATCH)."""
        body = dump_payload(data, exclude=READ_ONLY_FIELDS, exclude_unset=True)
        return self._parse(await self._request("PATCH", self._item_path(entity_id), body=body))

    async def delete(self, entity_id: Union[str, int]) -> None:
        await self._request("DELETE", self._item_path(entity_id))

    async def soft_delete(self, entity_id: Union[str, int]) -> Any:
        """Deactivate a record by PATCHing ``is_active`` to false.

        Always sent, even if the record is already inactive.
        """
        return self._parse(await self._request("PATCH", self._item_path(entity_id), body={"is_active": False}))


# =============================================================================
# Optional capabilities
# =============================================================================

@runtime_checkable
class StatsCapable(Protocol):
    async def stats(self) -> Dict[str, Any]: ...


@runtime_checkable
class SummaryCapable(Protocol):
    async def summary(self) -> Dict[str, Any]: ...


@runtime_checkable
class BulkCapable(Protocol):
    async def bulk_create(self, items: Iterable[Payload]) -> Any: ...

    async def bulk_update(self, updates: Iterable[Union[BulkUpdate, Mapping[str, Any]]]) -> Any: ...

    async def bulk_delete(self, ids: Iterable[Union[str, int]]) -> None: ...


@runtime_checkable
class ExportCapable(Protocol):
    async def export(self, params: ListParamsLike = None) -> bytes: ...


class StatsMixin:
    async def stats(self) -> Dict[str, Any]:
        return await self._request("GET", self._action_path("stats"))


class SummaryMixin:
    async def summary(self) -> Dict[str, Any]:
        return await self._request("GET", self._action_path("summary"))


class BulkMixin:
    async def bulk_create(self, items: Iterable[Payload]) -> Any:
        body = {"items": [dump_payload(item, exclude=READ_ONLY_FIELDS, exclude_unset=True) for item in items]}
        return self._parse_many(await self._request("POST", self._action_path("bulk_create"), body=body))

    async def bulk_update(self, updates: Iterable[Union[BulkUpdate, Mapping[str, Any]]]) -> Any:
        items = []
        for update in updates:
            if isinstance(update, BulkUpdate):
                update = update.to_dict()
            items.append({"id": update["id"], "data": dump_payload(update["data"], exclude=READ_ONLY_FIELDS)})
        return self._parse_many(await self._request("POST", self._action_path("bulk_update"), body={"items": items}))

    async def bulk_delete(self, ids: Iterable[Union[str, int]]) -> None:
        await self._request("POST", self._action_path("bulk_delete"), body={"ids": list(ids)})


class ExportMixin:
    async def export(self, params: ListParamsLike = None) -> bytes:
        """Download the export file; the body is returned undecoded."""
        with with_correlation(resource=self.resource_name):
            return await self._client.fetch_raw(self._action_path("export"), params=_query(params))


_CAPABILITY_MIXINS = (
    ("has_stats", StatsMixin),
    ("has_summary", SummaryMixin),
    ("has_bulk", BulkMixin),
    ("has_export", ExportMixin),
)


@lru_cache(maxsize=None)
def _resource_class(capabilities: ResourceCapabilities) -> type:
    mixins = tuple(mixin for flag, mixin in _CAPABILITY_MIXINS if getattr(capabilities, flag))
    if not mixins:
        return CrudApi
    name = "CrudApi" + "".join(mixin.__name__[: -len("Mixin")] for mixin in mixins)
    return type(name, mixins + (CrudApi,), {})


def create_crud_api(
    base_path: str,
    capabilities: Union[ResourceCapabilities, Mapping[str, bool], None] = None,
    *,
    model: Optional[Type[T]] = None,
    custom_endpoints: Optional[Mapping[str, EndpointFactory]] = None,
    client: Optional[HttpClient] = None,
) -> CrudApi:
    """Create a CRUD client for a resource.

    Args:
        base_path: Resource path without trailing slash (e.g. "/api/v1/business/companies")
        capabilities: Optional endpoints to expose (stats, summary, bulk, export)
        model: Pydantic model to validate records into; plain dicts when omitted
        custom_endpoints: name -> factory(client, base_path) returning the callable to bind
        client: HttpClient to delegate to (process default when omitted)

    Raises:
        ValueError: If a custom endpoint would replace a generated method
    """
    client = client or get_default_client()
    resource_cls = _resource_class(ResourceCapabilities.coerce(capabilities))
    api = resource_cls(client, base_path, model)

    for name, factory in (custom_endpoints or {}).items():
        if hasattr(api, name):
            raise ValueError(f"Custom endpoint {name!r} clashes with an existing method")
        setattr(api, name, factory(client, api.base_path))

    return api


# =============================================================================
# Nested resources
# =============================================================================

class NestedCrudApi(_ResourceBase[T]):
    """Client for a child resource addressed as ``parent/{parent_id}/child/...``."""

    def __init__(
        self,
        client: HttpClient,
        parent_base_path: str,
        child_path: str,
        model: Optional[Type[T]] = None,
    ):
        super().__init__(client, model)
        self.parent_base_path = parent_base_path.rstrip("/")
        self.child_path = child_path.strip("/")

    @property
    def resource_name(self) -> str:
        return self.child_path

    def _collection_path(self, parent_id: Union[str, int]) -> str:
        return f"{self.parent_base_path}/{parent_id}/{self.child_path}/"

    def _item_path(self, parent_id: Union[str, int], entity_id: Union[str, int]) -> str:
        return f"{self.parent_base_path}/{parent_id}/{self.child_path}/{entity_id}/"

    async def list(self, parent_id: Union[str, int], params: ListParamsLike = None) -> PaginatedResponse:
        data = await self._request("GET", self._collection_path(parent_id), params=_query(params))
        return self._parse_page(data)

    async def get(self, parent_id: Union[str, int], entity_id: Union[str, int]) -> Any:
        return self._parse(await self._request("GET", self._item_path(parent_id, entity_id)))

    async def create(self, parent_id: Union[str, int], data: Payload) -> Any:
        body = dump_payload(data, exclude=READ_ONLY_FIELDS, exclude_unset=True)
        return self._parse(await self._request("POST", self._collection_path(parent_id), body=body))

    async def update(self, parent_id: Union[str, int], entity_id: Union[str, int], data: Payload) -> Any:
        """Partially update a child record (PATCH)."""
        body = dump_payload(data, exclude=READ_ONLY_FIELDS, exclude_unset=True)
        return self._parse(await self._request("PATCH", self._item_path(parent_id, entity_id), body=body))

    async def delete(self, parent_id: Union[str, int], entity_id: Union[str, int]) -> None:
        await self._request("DELETE", self._item_path(parent_id, entity_id))


def create_nested_crud_api(
    parent_base_path: str,
    child_path: str,
    *,
    model: Optional[Type[T]] = None,
    client: Optional[HttpClient] = None,
) -> NestedCrudApi:
    """Create a CRUD client for a child resource (e.g. ``/api/v1/projects`` + ``tasks``)."""
    return NestedCrudApi(client or get_default_client(), parent_base_path, child_path, model)


def custom_action(
    action: str,
    method: str = "POST",
    payload_key: Optional[str] = None,
) -> EndpointFactory:
    """Build a custom endpoint factory for ``base_path/{id}/{action}/``.

    The bound callable takes the record id and, when ``payload_key`` is set,
    a value sent as ``{payload_key: value}``.
    """
    def factory(client: HttpClient, base_path: str) -> Callable[..., Any]:
        async def call(entity_id: Union[str, int], value: Any = None) -> Any:
            body = {payload_key: value} if payload_key else None
            return await client.request(method, f"{base_path}/{entity_id}/{action}/", body=body)

        call.__name__ = action.replace("-", "_")
        return call

    return factory


def custom_collection_action(action: str, method: str = "GET") -> EndpointFactory:
    """Build a custom endpoint factory for ``base_path/{action}/``.

    GET calls take keyword query parameters; other methods take a JSON body.
    """
    def factory(client: HttpClient, base_path: str) -> Callable[..., Any]:
        async def call(body: Optional[Any] = None, **params: Any) -> Any:
            path = f"{base_path}/{action}/"
            if method == "GET":
                return await client.request(method, path, params=params or None)
            return await client.request(method, path, body=body)

        call.__name__ = action.replace("-", "_")
        return call

    return factory
