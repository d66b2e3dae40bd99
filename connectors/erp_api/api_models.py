"""ERP API data models.

Pydantic models for the wire shapes shared by every backend resource, plus the
plain dataclasses the client uses internally to describe a request and the
capability set of a resource.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Generic, List, Mapping, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")

Scalar = Union[str, int, float, bool]
QueryParams = Mapping[str, Optional[Scalar]]


# =============================================================================
# Wire models
# =============================================================================

class PaginatedResponse(BaseModel, Generic[T]):
    """One page of a list endpoint.

    ``count`` is the total across all pages, not the length of ``results``.
    """
    count: int = 0
    next: Optional[str] = None
    previous: Optional[str] = None
    results: List[T] = Field(default_factory=list)


class BaseEntity(BaseModel):
    """Fields every backend record carries.

    Records are owned by the backend; unknown fields are kept as-is.
    """
    model_config = ConfigDict(extra="allow")

    id: Union[str, int]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    is_active: Optional[bool] = None


# Fields stripped from model payloads on create
READ_ONLY_FIELDS = frozenset({"id", "created_at", "updated_at"})


class ListParams(BaseModel):
    """Query parameters accepted by list endpoints.

    Any extra keyword becomes a filter parameter.
    """
    model_config = ConfigDict(extra="allow")

    page: Optional[int] = None
    page_size: Optional[int] = None
    ordering: Optional[str] = None
    search: Optional[str] = None
    is_active: Optional[bool] = None

    def to_query(self) -> Dict[str, Scalar]:
        return {k: v for k, v in self.model_dump().items() if v is not None}


class TokenPair(BaseModel):
    """Response of the token obtain endpoint."""
    access: str = Field(min_length=1)
    refresh: str = Field(min_length=1)


class TokenRefreshResponse(BaseModel):
    """Response of the token refresh endpoint.

    ``refresh`` is only present when the backend rotates refresh tokens.
    """
    access: str = Field(min_length=1)
    refresh: Optional[str] = None


# =============================================================================
# Client-side descriptors
# =============================================================================

@dataclass
class RequestDescriptor:
    """Everything needed to issue one logical request.

    Attributes:
        method: HTTP method
        path: Absolute URL or path relative to the configured base URL
        params: Query parameters; None values are dropped
        body: JSON-serializable body; omitted from the request when None
        skip_auth: Send without Authorization and never refresh (login/refresh calls)
    """
    method: str
    path: str
    params: Optional[QueryParams] = None
    body: Optional[Any] = None
    skip_auth: bool = False


@dataclass(frozen=True)
class ResourceCapabilities:
    """Optional endpoints a resource exposes beyond plain CRUD."""
    has_stats: bool = False
    has_summary: bool = False
    has_bulk: bool = False
    has_export: bool = False

    @classmethod
    def coerce(
        cls,
        value: Union["ResourceCapabilities", Mapping[str, bool], None],
    ) -> "ResourceCapabilities":
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        return cls(**dict(value))


@dataclass
class BulkUpdate:
    """One entry of a bulk update request."""
    id: Union[str, int]
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "data": self.data}
