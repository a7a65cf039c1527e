from __future__ import annotations

from typing import Any

from fastapi import HTTPException

from readrise.routes.http import http_client
from readrise.services.metrics import record_dependency_call_async
from readrise.services.resilience import DEFAULT_TIMEOUT

Params = dict[str, Any] | list[tuple[str, Any]]


def eq(value: Any) -> str:
    """PostgREST equality filter value."""
    if isinstance(value, bool):
        value = str(value).lower()
    return f"eq.{value}"


class SupabaseRestRepository:
    def __init__(self, *, base_url: str | None, service_role_key: str | None):
        self.base_url = (base_url or "").rstrip("/")
        self.service_role_key = service_role_key

    def _resource_url(self, resource: str) -> str:
        if not self.base_url:
            raise HTTPException(status_code=500, detail="SUPABASE_URL is not configured.")
        resource_name = resource.lstrip("/")
        return f"{self.base_url}/rest/v1/{resource_name}"

    def headers(self, *, prefer: str | None = None, include_content_type: bool = True) -> dict[str, str]:
        if not self.service_role_key:
            raise HTTPException(status_code=500, detail="Supabase service role key missing.")

        headers = {
            "apikey": self.service_role_key,
            "Authorization": f"Bearer {self.service_role_key}",
        }
        if include_content_type:
            headers["Content-Type"] = "application/json"
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def request(
        self,
        method: str,
        *,
        resource: str,
        params: Params | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ):
        url = self._resource_url(resource)
        request_kwargs: dict[str, Any] = {
            "params": params,
            "headers": headers or self.headers(),
            "timeout": DEFAULT_TIMEOUT,
        }
        if json is not None:
            request_kwargs["json"] = json

        client_method = getattr(http_client, method.lower(), None)

        async def _invoke():
            if client_method is not None:
                return await client_method(url, **request_kwargs)
            return await http_client.request(method.upper(), url, **request_kwargs)

        return await record_dependency_call_async("supabase", _invoke)

    async def get(self, resource: str, *, params: Params | None = None, headers: dict[str, str] | None = None):
        return await self.request("GET", resource=resource, params=params, headers=headers)

    async def post(
        self,
        resource: str,
        *,
        params: Params | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ):
        return await self.request("POST", resource=resource, params=params, json=json, headers=headers)


async def expect_ok(response, *, detail: str, allowed: set[int] | tuple[int, ...] = (200,)):
    if response.status_code not in set(allowed):
        raise HTTPException(status_code=502, detail=f"{detail} (status {response.status_code})")
    return response
