"""
HTTP API.

Recipient management, transaction history and manual payroll runs.
"""

from payroll.api.app import create_app

__all__ = ["create_app"]
