"""Core module - settings, credential storage and observability.

This module is shared by every connector and holds nothing resource-specific.

Resource clients for the ERP backend belong in /connectors/.
"""

__version__ = "1.0.0"
