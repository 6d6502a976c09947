# Overview: HTTP client for the commerce platform; GraphQL first, REST only through the endpoint guard.

from __future__ import annotations

from urllib.parse import urlsplit

import httpx
from flask import current_app

from ..validation import ValidationError
from .alias_service import normalize_shopify_id
"""
Platform Client Invariants

- Every call has a bounded timeout (SHOPIFY_HTTP_TIMEOUT_SECONDS).
- Product and variant resources are read and written through GraphQL only.
  rest() rejects deprecated product/variant routes before any network I/O,
  for every HTTP method, and rejects anything outside a small allow-list.
- Every permitted REST call is logged with method, endpoint and API version.
- Tests inject an httpx transport via app.config["SHOPIFY_TRANSPORT"].
"""


DEPRECATED_REST_PATTERNS = (
    "/products.json",
    "/products/",
    "/variants.json",
    "/variants/",
    "/admin/products",
    "/admin/variants",
)

ALLOWED_REST_PREFIXES = (
    "/orders",
    "/shop.json",
    "/locations",
    "/fulfillment_orders",
    "/returns",
)

RETURN_ACTION_MUTATIONS = {
    "approve": (
        "returnApproveRequest",
        """
        mutation returnApproveRequest($id: ID!) {
          returnApproveRequest(input: { id: $id }) {
            return { id status }
            userErrors { field message }
          }
        }
        """,
    ),
    "decline": (
        "returnDeclineRequest",
        """
        mutation returnDeclineRequest($id: ID!, $declineReason: ReturnDeclineReason) {
          returnDeclineRequest(input: { id: $id, declineReason: $declineReason }) {
            return { id status }
            userErrors { field message }
          }
        }
        """,
    ),
    "close": (
        "returnClose",
        """
        mutation returnClose($id: ID!) {
          returnClose(input: { id: $id }) {
            return { id status }
            userErrors { field message }
          }
        }
        """,
    ),
}

LOCATIONS_QUERY = """
query {
  locations(first: 10) {
    edges { node { id name isActive fulfillsOnlineOrders } }
  }
}
"""

INVENTORY_SET_MUTATION = """
mutation inventorySetQuantities($input: InventorySetQuantitiesInput!) {
  inventorySetQuantities(input: $input) {
    inventoryAdjustmentGroup { id }
    userErrors { field message }
  }
}
"""


class ShopifyAPIError(Exception):
    """Platform unreachable, non-2xx response, or GraphQL/user errors."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RestGuardError(Exception):
    """Base for REST calls refused locally, before any network request."""


class DeprecatedEndpointError(RestGuardError):
    """The endpoint is a deprecated product/variant REST route."""


class EndpointNotAllowedError(RestGuardError):
    """The endpoint is not on the REST allow-list."""


def response_json(response: httpx.Response, context: str) -> dict:
    """Decoded JSON object of a platform response; anything else is a ShopifyAPIError."""
    try:
        data = response.json()
    except ValueError:
        raise ShopifyAPIError(f"{context}: response is not JSON (HTTP {response.status_code})", response.status_code)
    if not isinstance(data, dict):
        raise ShopifyAPIError(f"{context}: unexpected response body", response.status_code)
    return data


def _transport():
    return current_app.config.get("SHOPIFY_TRANSPORT")


def _timeout() -> float:
    return current_app.config["SHOPIFY_HTTP_TIMEOUT_SECONDS"]


def exchange_oauth_code(*, shop_domain: str, code: str) -> dict:
    """
    Trade an authorization code for an offline access token.

    Returns {"access_token": str, "scope": str}.
    """
    url = f"https://{shop_domain}/admin/oauth/access_token"
    try:
        with httpx.Client(timeout=_timeout(), transport=_transport()) as client:
            response = client.post(
                url,
                json={
                    "client_id": current_app.config["SHOPIFY_CLIENT_ID"],
                    "client_secret": current_app.config["SHOPIFY_CLIENT_SECRET"],
                    "code": code,
                },
            )
    except httpx.HTTPError as e:
        raise ShopifyAPIError(f"Token exchange failed: {e}")

    if response.status_code != 200:
        raise ShopifyAPIError(f"Token exchange failed: HTTP {response.status_code}", response.status_code)
    data = response_json(response, "Token exchange failed")
    if not data.get("access_token"):
        raise ShopifyAPIError("Token exchange returned no access token")
    return {"access_token": data["access_token"], "scope": data.get("scope")}


class ShopifyClient:
    """Admin API client for one connected store."""

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        *,
        api_version: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.shop_domain = shop_domain
        self.access_token = access_token
        self.api_version = api_version or current_app.config["SHOPIFY_API_VERSION"]
        self.base_url = f"https://{shop_domain}/admin/api/{self.api_version}"
        self.client = httpx.Client(
            timeout=timeout if timeout is not None else _timeout(),
            transport=transport if transport is not None else _transport(),
        )

    @classmethod
    def for_connection(cls, connection) -> "ShopifyClient":
        return cls(connection.shop_domain, connection.access_token)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self) -> None:
        self.client.close()

    def _headers(self) -> dict:
        return {
            "X-Shopify-Access-Token": self.access_token,
            "Content-Type": "application/json",
        }

    # -------------------------------------------------------------------------
    # GraphQL
    # -------------------------------------------------------------------------

    def graphql(self, query: str, variables: dict | None = None) -> dict:
        try:
            response = self.client.post(
                f"{self.base_url}/graphql.json",
                headers=self._headers(),
                json={"query": query, "variables": variables or {}},
            )
        except httpx.HTTPError as e:
            raise ShopifyAPIError(f"GraphQL request failed: {e}")

        if response.status_code >= 400:
            raise ShopifyAPIError(f"GraphQL request failed: HTTP {response.status_code}", response.status_code)
        result = response_json(response, "GraphQL request failed")
        if result.get("errors"):
            raise ShopifyAPIError(f"GraphQL errors: {result['errors']}")
        return result.get("data") or {}

    # -------------------------------------------------------------------------
    # Guarded REST
    # -------------------------------------------------------------------------

    def _relative_path(self, endpoint: str) -> str:
        if not endpoint.lower().startswith("http"):
            return endpoint if endpoint.startswith("/") else f"/{endpoint}"
        parts = urlsplit(endpoint)
        if parts.hostname != self.shop_domain:
            raise EndpointNotAllowedError(f"REST endpoint host {parts.hostname} is not this store")
        prefix = f"/admin/api/{self.api_version}"
        if not parts.path.startswith(prefix):
            raise EndpointNotAllowedError(f"REST endpoint {parts.path} is outside the versioned admin API")
        return parts.path[len(prefix):]

    def check_endpoint(self, endpoint: str) -> str:
        """Raise unless endpoint may be called over REST. Returns the relative path."""
        lowered = endpoint.lower()
        for pattern in DEPRECATED_REST_PATTERNS:
            if pattern in lowered:
                current_app.logger.error("BLOCKED: attempt to call deprecated REST endpoint %s", endpoint)
                raise DeprecatedEndpointError(f"Deprecated REST endpoint blocked: {pattern}. Use GraphQL instead.")

        path = self._relative_path(endpoint)
        if not any(path.lower().startswith(prefix) for prefix in ALLOWED_REST_PREFIXES):
            current_app.logger.error("BLOCKED: REST endpoint %s is not allow-listed", endpoint)
            raise EndpointNotAllowedError(f"REST endpoint {path} is not allow-listed")
        return path

    def rest(self, method: str, endpoint: str, *, params: dict | None = None, json: dict | None = None) -> httpx.Response:
        method = method.upper()
        path = self.check_endpoint(endpoint)

        current_app.logger.info("[REST API] %s %s (API version: %s)", method, path, self.api_version)

        url = endpoint if endpoint.lower().startswith("http") else f"{self.base_url}{path}"
        try:
            response = self.client.request(method, url, headers=self._headers(), params=params, json=json)
        except httpx.HTTPError as e:
            raise ShopifyAPIError(f"REST {method} {path} failed: {e}")
        if response.status_code >= 400:
            raise ShopifyAPIError(f"REST {method} {path} failed: HTTP {response.status_code}", response.status_code)
        return response

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def fetch_locations(self) -> list[dict]:
        data = self.graphql(LOCATIONS_QUERY)
        return [edge["node"] for edge in (data.get("locations") or {}).get("edges", [])]

    def discover_location_id(self) -> str:
        """Numeric id of the active online-fulfilling location, else the first one."""
        locations = self.fetch_locations()
        chosen = next(
            (loc for loc in locations if loc.get("isActive") and loc.get("fulfillsOnlineOrders")),
            locations[0] if locations else None,
        )
        if chosen is None:
            raise ShopifyAPIError("No platform location found for this store")
        return normalize_shopify_id(chosen["id"])

    def set_inventory_quantity(self, *, inventory_item_id: str, location_id: str, quantity: int) -> dict:
        data = self.graphql(
            INVENTORY_SET_MUTATION,
            {
                "input": {
                    "reason": "correction",
                    "name": "available",
                    "ignoreCompareQuantity": True,
                    "quantities": [
                        {
                            "inventoryItemId": f"gid://shopify/InventoryItem/{inventory_item_id}",
                            "locationId": f"gid://shopify/Location/{location_id}",
                            "quantity": quantity,
                        }
                    ],
                }
            },
        )
        result = data.get("inventorySetQuantities") or {}
        if result.get("userErrors"):
            raise ShopifyAPIError(f"Platform rejected inventory update: {result['userErrors']}")
        return result

    def return_action(self, shopify_return_id: str, action: str) -> dict:
        """approve | decline | close a platform return via GraphQL."""
        if action not in RETURN_ACTION_MUTATIONS:
            raise ValidationError(f"Invalid return action '{action}'")
        key, mutation = RETURN_ACTION_MUTATIONS[action]
        variables = {"id": f"gid://shopify/Return/{shopify_return_id}"}
        if action == "decline":
            variables["declineReason"] = "OTHER"

        data = self.graphql(mutation, variables)
        result = data.get(key) or {}
        if result.get("userErrors"):
            messages = ", ".join(err.get("message", "") for err in result["userErrors"])
            raise ShopifyAPIError(f"Platform return action failed: {messages}")
        return result.get("return") or {}
