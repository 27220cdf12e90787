"""Management console API client (IBM Blockchain Platform v3 REST API).

Scope:
- Only the endpoints the provisioning flows use.
- Every call returns an `ApiResponse` (status code + decoded JSON body);
  non-2xx answers raise `ConsoleApiError`.

Auth:
- `IamAuthenticator` trades an API key for a bearer token at the IAM identity
  endpoint and caches it until shortly before expiry.
- `BearerTokenAuthenticator` sends a static token.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Generator

import httpx

from adapters.http_client import build_client
from core.config import AppSettings, SetupInformation
from core.domain.models import CryptoObject, MspCryptoField, dump_payload
from core.errors import ConsoleApiError

logger = logging.getLogger(__name__)

API_PREFIX = "/ak/api/v3"
IAM_GRANT_TYPE = "urn:ibm:params:oauth:grant-type:apikey"

# Refresh the IAM token this many seconds before it expires.
_TOKEN_EXPIRY_MARGIN = 60.0


class BearerTokenAuthenticator(httpx.Auth):
    def __init__(self, bearer_token: str) -> None:
        self._token = bearer_token

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers["Authorization"] = f"Bearer {self._token}"
        yield request


class IamAuthenticator(httpx.Auth):
    """API key -> bearer token exchange with a cached token."""

    def __init__(
        self,
        api_key: str,
        url: str,
        *,
        client: httpx.Client | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required")
        self._api_key = api_key
        self._url = url
        self._client = client
        self._clock = clock
        self._token: str | None = None
        self._expires_at = 0.0
        self._lock = threading.Lock()

    def _request_token(self) -> str:
        client = self._client or httpx.Client(timeout=httpx.Timeout(30.0))
        try:
            response = client.post(
                self._url,
                data={"grant_type": IAM_GRANT_TYPE, "apikey": self._api_key},
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise ConsoleApiError(f"problem requesting an IAM token: {exc}") from exc
        finally:
            if self._client is None:
                client.close()

        if not response.is_success:
            raise ConsoleApiError(
                "IAM token request failed",
                status_code=response.status_code,
                body=response.text,
            )
        payload = response.json()
        token = payload.get("access_token")
        if not isinstance(token, str) or not token:
            raise ConsoleApiError("IAM token response without access_token", body=payload)

        now = self._clock()
        expiration = payload.get("expiration")
        expires_in = payload.get("expires_in")
        if isinstance(expiration, (int, float)):
            self._expires_at = float(expiration)
        elif isinstance(expires_in, (int, float)):
            self._expires_at = now + float(expires_in)
        else:
            self._expires_at = now + 3600.0
        self._token = token
        return token

    def token(self) -> str:
        with self._lock:
            if self._token is None or self._clock() >= self._expires_at - _TOKEN_EXPIRY_MARGIN:
                return self._request_token()
            return self._token

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers["Authorization"] = f"Bearer {self.token()}"
        yield request


@dataclass
class ApiResponse:
    status_code: int
    body: Any

    def get(self, key: str, default: Any = None) -> Any:
        if isinstance(self.body, dict):
            return self.body.get(key, default)
        return default


class ConsoleClient:
    """Thin client for the console's component endpoints."""

    def __init__(
        self,
        service_url: str,
        authenticator: httpx.Auth | None = None,
        *,
        http_client: httpx.Client | None = None,
        settings: AppSettings | None = None,
    ) -> None:
        self.service_url = service_url.rstrip("/")
        self._owns_client = http_client is None
        if http_client is None:
            http_client = build_client(settings, base_url=self.service_url, auth=authenticator)
        elif authenticator is not None:
            http_client.auth = authenticator
        self._http = http_client

    @classmethod
    def from_setup(
        cls,
        setup: SetupInformation,
        *,
        settings: AppSettings | None = None,
    ) -> "ConsoleClient":
        authenticator = IamAuthenticator(setup.api_key, setup.identity_url)
        return cls(setup.service_url, authenticator, settings=settings)

    def close(self) -> None:
        if self._owns_client:
            self._http.close()

    def __enter__(self) -> "ConsoleClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _url(self, path: str) -> str:
        return f"{self.service_url}{API_PREFIX}{path}"

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> ApiResponse:
        url = self._url(path)
        logger.debug("%s %s", method, url)
        try:
            response = self._http.request(method, url, json=json, params=params)
        except httpx.HTTPError as exc:
            raise ConsoleApiError(f"problem calling {method} {path}: {exc}") from exc

        body: Any = None
        if response.content:
            try:
                body = response.json()
            except ValueError:
                body = response.text
        if not response.is_success:
            raise ConsoleApiError(
                f"{method} {path} failed with status {response.status_code}",
                status_code=response.status_code,
                body=body,
            )
        return ApiResponse(status_code=response.status_code, body=body)

    # -- components ---------------------------------------------------------

    def list_components(self, *, deployment_attrs: str | None = None) -> ApiResponse:
        params = {"deployment_attrs": deployment_attrs} if deployment_attrs else None
        return self._request("GET", "/components", params=params)

    def get_component(self, component_id: str) -> ApiResponse:
        return self._request("GET", f"/components/{component_id}")

    def delete_component(self, component_id: str) -> ApiResponse:
        """Delete a component the console deployed (Kubernetes resources included)."""

        return self._request("DELETE", f"/kubernetes/components/{component_id}")

    def remove_component(self, component_id: str) -> ApiResponse:
        """Remove an imported component from the console only."""

        return self._request("DELETE", f"/components/{component_id}")

    def remove_components_by_tag(self, tag: str) -> ApiResponse:
        return self._request("DELETE", f"/components/tags/{tag}")

    def delete_all_components(self) -> ApiResponse:
        return self._request("DELETE", "/kubernetes/components/purge")

    # -- certificate authorities --------------------------------------------

    def create_ca(self, display_name: str, config_override: dict[str, Any], **extra: Any) -> ApiResponse:
        body = {"display_name": display_name, "config_override": config_override, **extra}
        return self._request("POST", "/kubernetes/components/fabric-ca", json=body)

    def import_ca(self, display_name: str, api_url: str, msp: dict[str, Any], **extra: Any) -> ApiResponse:
        body = {"display_name": display_name, "api_url": api_url, "msp": msp, **extra}
        return self._request("POST", "/components/fabric-ca", json=body)

    def update_ca(self, component_id: str, config_override: dict[str, Any] | None = None, **extra: Any) -> ApiResponse:
        body = dict(extra)
        if config_override is not None:
            body["config_override"] = config_override
        return self._request("PUT", f"/kubernetes/components/fabric-ca/{component_id}", json=body)

    def edit_ca(
        self,
        component_id: str,
        *,
        display_name: str | None = None,
        ca_name: str | None = None,
        tags: list[str] | None = None,
    ) -> ApiResponse:
        body = _compact({"display_name": display_name, "ca_name": ca_name, "tags": tags})
        return self._request("PUT", f"/components/fabric-ca/{component_id}", json=body)

    def ca_action(self, component_id: str, *, restart: bool = False, renew_tls: bool | None = None) -> ApiResponse:
        body = _compact({"restart": restart, "renew": {"tls_cert": renew_tls} if renew_tls else None})
        return self._request("POST", f"/kubernetes/components/fabric-ca/{component_id}/actions", json=body)

    # -- MSPs ----------------------------------------------------------------

    def import_msp(
        self,
        msp_id: str,
        display_name: str,
        root_certs: list[str],
        *,
        admins: list[str] | None = None,
        tls_root_certs: list[str] | None = None,
    ) -> ApiResponse:
        body = _compact(
            {
                "msp_id": msp_id,
                "display_name": display_name,
                "root_certs": root_certs,
                "admins": admins,
                "tls_root_certs": tls_root_certs,
            }
        )
        return self._request("POST", "/components/msp", json=body)

    # -- peers ----------------------------------------------------------------

    def create_peer(self, msp_id: str, display_name: str, crypto: CryptoObject, **extra: Any) -> ApiResponse:
        body = {"msp_id": msp_id, "display_name": display_name, "crypto": dump_payload(crypto), **extra}
        return self._request("POST", "/kubernetes/components/fabric-peer", json=body)

    def import_peer(
        self,
        display_name: str,
        grpcwp_url: str,
        msp: MspCryptoField,
        msp_id: str,
        **extra: Any,
    ) -> ApiResponse:
        body = {
            "display_name": display_name,
            "grpcwp_url": grpcwp_url,
            "msp": dump_payload(msp),
            "msp_id": msp_id,
            **extra,
        }
        return self._request("POST", "/components/fabric-peer", json=body)

    def edit_peer(self, component_id: str, **fields: Any) -> ApiResponse:
        return self._request("PUT", f"/components/fabric-peer/{component_id}", json=_compact(fields))

    def peer_action(self, component_id: str, *, restart: bool = False) -> ApiResponse:
        return self._request(
            "POST",
            f"/kubernetes/components/fabric-peer/{component_id}/actions",
            json={"restart": restart},
        )

    # -- orderers -------------------------------------------------------------

    def create_orderer(
        self,
        orderer_type: str,
        msp_id: str,
        display_name: str,
        crypto: list[CryptoObject],
        **extra: Any,
    ) -> ApiResponse:
        body = {
            "orderer_type": orderer_type,
            "msp_id": msp_id,
            "display_name": display_name,
            "crypto": [dump_payload(item) for item in crypto],
            **extra,
        }
        return self._request("POST", "/kubernetes/components/fabric-orderer", json=body)

    def import_orderer(
        self,
        cluster_name: str,
        display_name: str,
        grpcwp_url: str,
        msp: MspCryptoField,
        msp_id: str,
        **extra: Any,
    ) -> ApiResponse:
        body = {
            "cluster_name": cluster_name,
            "display_name": display_name,
            "grpcwp_url": grpcwp_url,
            "msp": dump_payload(msp),
            "msp_id": msp_id,
            **extra,
        }
        return self._request("POST", "/components/fabric-orderer", json=body)

    def edit_orderer(self, component_id: str, **fields: Any) -> ApiResponse:
        return self._request("PUT", f"/components/fabric-orderer/{component_id}", json=_compact(fields))

    def orderer_action(self, component_id: str, *, restart: bool = False) -> ApiResponse:
        return self._request(
            "POST",
            f"/kubernetes/components/fabric-orderer/{component_id}/actions",
            json={"restart": restart},
        )


def _compact(values: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}
