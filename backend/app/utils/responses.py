"""
Standardized JSON response utilities for API endpoints.

Every endpoint of the provisioning API answers with the same envelope:

    {"success": true,  "message": "...", "data": {...}}
    {"success": false, "error": {"code": "...", "message": "...", "details": {...}}}
"""

from typing import Any, Dict, Optional, Union
from flask import jsonify, Response
from http import HTTPStatus


def success_response(
    data: Any = None,
    message: str = "Success",
    status_code: int = HTTPStatus.OK
) -> tuple[Response, int]:
    """
    Generate a standardized success response.

    Args:
        data: Response payload (omitted from the body when None)
        message: Success message to include in response
        status_code: HTTP status code (default: 200 OK)

    Returns:
        Tuple of (JSON response, status code)

    Example:
        >>> return success_response({"schemaName": "tenant_acme"}, "Schema tenant_acme updated")
        ({
            "success": true,
            "message": "Schema tenant_acme updated",
            "data": {"schemaName": "tenant_acme"}
        }, 200)
    """
    response_body = {
        "success": True,
        "message": message,
    }

    if data is not None:
        response_body["data"] = data

    return jsonify(response_body), status_code


def error_response(
    code: str,
    message: str,
    details: Optional[Union[str, Dict[str, Any]]] = None,
    status_code: int = HTTPStatus.BAD_REQUEST
) -> tuple[Response, int]:
    """
    Generate a standardized error response.

    Args:
        code: Error code identifier (e.g., "BAD_REQUEST", "NOT_FOUND")
        message: Human-readable error message
        details: Field-level validation errors, or the failed operation
            (tenantId, operation, cause) of a provisioning error
        status_code: HTTP status code (default: 400 Bad Request)

    Example:
        >>> return error_response(
        ...     "BAD_REQUEST",
        ...     "Rollback failed for tenant 'acme': No applied changeset to roll back",
        ...     {"tenantId": "acme", "operation": "rollback", "cause": "RollbackError"}
        ... )
    """
    error_body = {
        "code": code,
        "message": message,
    }

    if details is not None:
        error_body["details"] = details

    return jsonify({"success": False, "error": error_body}), status_code


def ok(data: Any = None, message: str = "Success") -> tuple[Response, int]:
    """200 OK response."""
    return success_response(data, message, HTTPStatus.OK)


def created(data: Any = None, message: str = "Resource created") -> tuple[Response, int]:
    """201 Created response (tenant provisioned)."""
    return success_response(data, message, HTTPStatus.CREATED)


def bad_request(message: str, details: Optional[Union[str, Dict[str, Any]]] = None) -> tuple[Response, int]:
    """
    400 Bad Request response.

    Used for validation errors and for every ProvisioningError.
    """
    return error_response("BAD_REQUEST", message, details, HTTPStatus.BAD_REQUEST)


def not_found(resource: str = "Resource", details: Optional[str] = None) -> tuple[Response, int]:
    """
    404 Not Found response.

    Args:
        resource: Name of the missing resource ("Tenant" -> "Tenant not found")
    """
    return error_response("NOT_FOUND", f"{resource} not found", details, HTTPStatus.NOT_FOUND)


def service_unavailable(
    message: str = "Service temporarily unavailable",
    details: Optional[str] = None
) -> tuple[Response, int]:
    """503 Service Unavailable response (registry database unreachable)."""
    return error_response("SERVICE_UNAVAILABLE", message, details, HTTPStatus.SERVICE_UNAVAILABLE)
