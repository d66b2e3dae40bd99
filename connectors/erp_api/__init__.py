"""ERP backend API access layer.

One authenticated async HttpClient plus a factory that mints CRUD clients for
any REST resource of the backend.
"""

from connectors.erp_api.api_client import (
    HttpClient,
    RawResponse,
    build_multipart_form,
    build_query_string,
    get_default_client,
    set_default_client,
)
from connectors.erp_api.api_errors import (
    ApiError,
    AuthenticationRequiredError,
    AuthenticationExpiredError,
    RequestFailedError,
    UploadFailedError,
    NetworkError,
)
from connectors.erp_api.api_models import (
    BaseEntity,
    BulkUpdate,
    ListParams,
    PaginatedResponse,
    RequestDescriptor,
    ResourceCapabilities,
    TokenPair,
    TokenRefreshResponse,
)
from connectors.erp_api.auth_api import AuthApi
from connectors.erp_api.crud_api import (
    BulkCapable,
    CrudApi,
    ExportCapable,
    NestedCrudApi,
    StatsCapable,
    SummaryCapable,
    create_crud_api,
    create_nested_crud_api,
    custom_action,
    custom_collection_action,
)
from connectors.erp_api.resources import ErpResources, build_resources

__all__ = [
    # Client
    "HttpClient",
    "RawResponse",
    "build_multipart_form",
    "build_query_string",
    "get_default_client",
    "set_default_client",
    # Errors
    "ApiError",
    "AuthenticationRequiredError",
    "AuthenticationExpiredError",
    "RequestFailedError",
    "UploadFailedError",
    "NetworkError",
    # Models
    "BaseEntity",
    "BulkUpdate",
    "ListParams",
    "PaginatedResponse",
    "RequestDescriptor",
    "ResourceCapabilities",
    "TokenPair",
    "TokenRefreshResponse",
    # Factories
    "CrudApi",
    "NestedCrudApi",
    "StatsCapable",
    "SummaryCapable",
    "BulkCapable",
    "ExportCapable",
    "create_crud_api",
    "create_nested_crud_api",
    "custom_action",
    "custom_collection_action",
    # Auth / catalog
    "AuthApi",
    "ErpResources",
    "build_resources",
]
