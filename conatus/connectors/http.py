"""
Conatus HTTP Connector

Generic API-request connector for workflows.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx
import structlog

logger = structlog.get_logger(__name__)


class HttpConnector:
    """
    Connector exposing a single ``api_request`` action.

    Supports bearer, basic and api-key (header or query) authentication.
    JSON responses are decoded; anything else is returned as text.
    """

    def __init__(
        self,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.transport = transport

    async def api_request(
        self,
        credential: str,
        url: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        body: Any = None,
        auth: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Make an API request.

        Args:
            credential: The user's credential for this service
            url: Request URL
            method: HTTP method
            headers: Extra request headers
            body: JSON-serialisable body (objects) or raw text
            auth: ``{"type": "bearer", "token"}``, ``{"type": "basic",
                "username", "password"}``, ``{"type": "api_key", "in":
                "header"|"query", "name", "value"}`` or ``{"type":
                "credential"}`` to send the stored credential as a bearer token

        Returns:
            ``{status, reason, headers, data, ok}``
        """
        method = (method or "GET").upper()
        request_headers = dict(headers or {})
        params: Dict[str, str] = {}
        basic_auth = None

        if auth:
            auth_type = auth.get("type")
            if auth_type == "bearer":
                request_headers["Authorization"] = f"Bearer {auth.get('token', '')}"
            elif auth_type == "credential":
                request_headers["Authorization"] = f"Bearer {credential}"
            elif auth_type == "basic":
                basic_auth = httpx.BasicAuth(auth.get("username", ""), auth.get("password", ""))
            elif auth_type == "api_key":
                if auth.get("in") == "query":
                    params[auth["name"]] = str(auth.get("value", ""))
                else:
                    request_headers[auth["name"]] = str(auth.get("value", ""))

        json_body = None
        content = None
        if body is not None and method != "GET":
            if isinstance(body, (dict, list)):
                json_body = body
            else:
                content = str(body)

        logger.info("calling_api", url=url, method=method)

        async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
            response = await client.request(
                method=method,
                url=url,
                headers=request_headers,
                params=params or None,
                json=json_body,
                content=content,
                auth=basic_auth,
            )

        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            data = response.json()
        else:
            data = response.text

        return {
            "status": response.status_code,
            "reason": response.reason_phrase,
            "headers": dict(response.headers),
            "data": data,
            "ok": response.is_success,
        }
