"""ERP Connectors - access to the ERP backend REST API.

This package contains:
- erp_api/: authenticated HTTP client, CRUD client factory and the
  resource catalog for the business, HRMS, accounting and projects modules

Callers should depend on the resource clients, never on aiohttp directly.
"""
