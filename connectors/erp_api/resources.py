"""ERP resource catalog.

Every resource client used by the business, HRMS, accounting and projects
modules, built through the CRUD factory against one HttpClient.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Union

import aiohttp

from connectors.erp_api.api_client import HttpClient, get_default_client
from connectors.erp_api.api_models import ResourceCapabilities
from connectors.erp_api.crud_api import (
    CrudApi,
    NestedCrudApi,
    create_crud_api,
    create_nested_crud_api,
    custom_action,
    custom_collection_action,
)

API_PREFIX = "/api/v1"
BUSINESS_PATH = f"{API_PREFIX}/business"
HRMS_PATH = f"{API_PREFIX}/hrms"
ACCOUNTING_PATH = f"{API_PREFIX}/accounting"
PROJECTS_PATH = f"{API_PREFIX}/projects"


def _company_search(client: HttpClient, base_path: str) -> Callable[..., Any]:
    async def search(query: str) -> Any:
        return await client.get(f"{base_path}/search/", params={"q": query})
    return search


def _account_by_code(client: HttpClient, base_path: str) -> Callable[..., Any]:
    async def by_code(code: str) -> Any:
        return await client.get(f"{base_path}/by-code/{code}/")
    return by_code


def _receipt_upload(client: HttpClient, base_path: str) -> Callable[..., Any]:
    async def upload_receipt(expense_id: Union[str, int], form: aiohttp.FormData) -> Any:
        return await client.upload(f"{base_path}/{expense_id}/upload-receipt/", form)
    return upload_receipt


@dataclass
class ErpResources:
    """Resource clients grouped by feature module."""
    # Business development
    companies: CrudApi
    # HRMS
    departments: CrudApi
    positions: CrudApi
    employees: CrudApi
    leave_requests: CrudApi
    # Accounting
    accounts: CrudApi
    invoices: CrudApi
    expenses: CrudApi
    payments: CrudApi
    # Projects
    projects: CrudApi
    project_tasks: NestedCrudApi

    def by_name(self) -> Dict[str, Union[CrudApi, NestedCrudApi]]:
        return dict(vars(self))


def build_resources(client: Optional[HttpClient] = None) -> ErpResources:
    """Wire every ERP resource against ``client`` (process default when omitted)."""
    client = client or get_default_client()

    return ErpResources(
        companies=create_crud_api(
            f"{BUSINESS_PATH}/companies",
            ResourceCapabilities(has_stats=True),
            custom_endpoints={"search": _company_search},
            client=client,
        ),
        departments=create_crud_api(
            f"{HRMS_PATH}/departments",
            custom_endpoints={"tree": custom_collection_action("tree")},
            client=client,
        ),
        positions=create_crud_api(f"{HRMS_PATH}/positions", client=client),
        employees=create_crud_api(
            f"{HRMS_PATH}/employees",
            ResourceCapabilities(has_stats=True, has_bulk=True, has_export=True),
            client=client,
        ),
        leave_requests=create_crud_api(
            f"{HRMS_PATH}/leave-requests",
            custom_endpoints={
                "approve": custom_action("approve"),
                "reject": custom_action("reject", payload_key="reason"),
            },
            client=client,
        ),
        accounts=create_crud_api(
            f"{ACCOUNTING_PATH}/accounts",
            custom_endpoints={
                "tree": custom_collection_action("tree"),
                "by_code": _account_by_code,
            },
            client=client,
        ),
        invoices=create_crud_api(
            f"{ACCOUNTING_PATH}/invoices",
            ResourceCapabilities(has_summary=True, has_export=True),
            custom_endpoints={
                "send": custom_action("send"),
                "mark_sent": custom_action("mark-sent"),
                "void": custom_action("void", payload_key="reason"),
                "duplicate": custom_action("duplicate"),
            },
            client=client,
        ),
        expenses=create_crud_api(
            f"{ACCOUNTING_PATH}/expenses",
            custom_endpoints={
                "approve": custom_action("approve"),
                "reject": custom_action("reject", payload_key="reason"),
                "upload_receipt": _receipt_upload,
            },
            client=client,
        ),
        payments=create_crud_api(
            f"{ACCOUNTING_PATH}/payments",
            custom_endpoints={
                "reconcile": custom_action("reconcile"),
                "unreconcile": custom_action("unreconcile"),
            },
            client=client,
        ),
        projects=create_crud_api(
            PROJECTS_PATH,
            ResourceCapabilities(has_stats=True),
            client=client,
        ),
        project_tasks=create_nested_crud_api(PROJECTS_PATH, "tasks", client=client),
    )
