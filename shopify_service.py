# shopify_service.py
import time
import random
import logging
from typing import List, Optional, Dict, Any

import requests

from config import settings

logger = logging.getLogger("shopify_service")


def gid_to_id(gid: Optional[str]) -> Optional[int]:
    if not gid:
        return None
    try:
        return int(str(gid).split('/')[-1])
    except (IndexError, ValueError):
        return None


def to_gid(resource: str, value) -> str:
    text = str(value)
    if text.startswith("gid://shopify/"):
        return text
    return f"gid://shopify/{resource}/{text}"


PRODUCT_MARKETS_QUERY = """
query GetProductMarkets($id: ID!) {{
  product(id: $id) {{
    id
    title
    {market_fields}
    resourcePublications(first: 10) {{
      edges {{ node {{ isPublished publication {{ id name }} }} }}
    }}
  }}
}}
"""

PUBLICATIONS_QUERY = """
query GetPublications {
  publications(first: 20) {
    edges { node { id name } }
  }
}
"""

PUBLISH_MUTATION = """
mutation PublishablePublish($id: ID!, $input: [PublicationInput!]!) {
  publishablePublish(id: $id, input: $input) {
    publishable { ... on Product { id } }
    userErrors { field message }
  }
}
"""


class ShopifyService:
    def __init__(self, store_url: str, token: str, api_version: str = "2025-10",
                 timeout: float = 10.0, max_retries: int = 1):
        if not all([store_url, token]):
            raise ValueError("Store URL and Access Token are required.")
        store_url = store_url.replace("https://", "").replace("http://", "").rstrip("/")
        self.rest_base = f"https://{store_url}/admin/api/{api_version}"
        self.api_endpoint = f"{self.rest_base}/graphql.json"
        self.headers = {"Content-Type": "application/json", "X-Shopify-Access-Token": token}
        self.timeout = timeout
        self.max_retries = max(1, int(max_retries))
        self._online_store_publication_id: Optional[str] = None

    @classmethod
    def from_settings(cls) -> Optional["ShopifyService"]:
        if not settings.shop_url or not settings.shop_token:
            return None
        return cls(
            store_url=settings.shop_url,
            token=settings.shop_token,
            api_version=settings.shopify_api_version,
            timeout=settings.upstream_timeout_seconds,
            max_retries=settings.shopify_max_retries,
        )

    def _execute_query(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        payload = {"query": query, "variables": variables or {}}
        base_delay = 1.0
        for attempt in range(self.max_retries):
            try:
                response = requests.post(self.api_endpoint, headers=self.headers, json=payload, timeout=self.timeout)
                response.raise_for_status()
                json_response = response.json()
                if "errors" in json_response and json_response.get("errors"):
                    is_throttled = any(err.get("extensions", {}).get("code") == "THROTTLED" for err in json_response["errors"])
                    if is_throttled and attempt < self.max_retries - 1:
                        wait_time = base_delay * (2 ** attempt) + random.uniform(0, 1)
                        time.sleep(wait_time)
                        continue
                    raise ValueError(f"GraphQL API Error: {json_response['errors']}")
                return json_response.get("data") or {}
            except requests.exceptions.RequestException:
                if attempt < self.max_retries - 1:
                    wait_time = base_delay * (2 ** attempt) + random.uniform(0, 1)
                    time.sleep(wait_time)
                else:
                    raise

    def _flatten_edges(self, data: Optional[Dict]) -> List:
        if not data or "edges" not in data:
            return []
        return [edge["node"] for edge in data.get("edges", [])]

    # -------------------- inventory --------------------
    def get_inventory_levels(self, inventory_item_id) -> List[Dict[str, Any]]:
        """
        Every location's level for one inventory item, normalized to
        {location_id, location_name, available, updated_at}.
        """
        response = requests.get(
            f"{self.rest_base}/inventory_levels.json",
            headers=self.headers,
            params={"inventory_item_ids": str(inventory_item_id)},
            timeout=self.timeout,
        )
        response.raise_for_status()
        levels = response.json().get("inventory_levels") or []
        return [
            {
                "location_id": str(level.get("location_id")),
                "location_name": (level.get("location") or {}).get("name") or level.get("location_name"),
                "available": level.get("available") or 0,
                "updated_at": level.get("updated_at"),
            }
            for level in levels
            if level.get("location_id") is not None
        ]

    # -------------------- markets / publications --------------------
    def get_product_markets(self, product_id, market_codes: List[str],
                            online_store_name: str = "Online Store") -> Dict[str, Any]:
        """
        Per-market publication flags and Online Store publication status in one request.
        Returns {"markets": {code: bool}, "published_to_online_store": bool, "found": bool}.
        """
        market_fields = "\n    ".join(
            f"publishedIn{code}: publishedInContext(context: {{country: {code}}})" for code in market_codes
        )
        query = PRODUCT_MARKETS_QUERY.format(market_fields=market_fields)
        data = self._execute_query(query, {"id": to_gid("Product", product_id)})
        product = data.get("product")
        if not product:
            return {"markets": {code: False for code in market_codes}, "published_to_online_store": False, "found": False}

        publications = self._flatten_edges(product.get("resourcePublications"))
        online_store = next(
            (p for p in publications if (p.get("publication") or {}).get("name") == online_store_name), None
        )
        return {
            "markets": {code: bool(product.get(f"publishedIn{code}")) for code in market_codes},
            "published_to_online_store": bool(online_store and online_store.get("isPublished")),
            "found": True,
        }

    def get_online_store_publication_id(self, online_store_name: str = "Online Store") -> str:
        if self._online_store_publication_id:
            return self._online_store_publication_id
        data = self._execute_query(PUBLICATIONS_QUERY)
        publication = next(
            (p for p in self._flatten_edges(data.get("publications")) if p.get("name") == online_store_name), None
        )
        if not publication:
            raise ValueError(f"Publication '{online_store_name}' not found. Is the sales channel enabled?")
        self._online_store_publication_id = publication["id"]
        return self._online_store_publication_id

    def publish_product_to_online_store(self, product_id, online_store_name: str = "Online Store") -> Dict[str, Any]:
        """Idempotent: publishing an already-published product is a no-op upstream."""
        publication_id = self.get_online_store_publication_id(online_store_name)
        data = self._execute_query(
            PUBLISH_MUTATION,
            {"id": to_gid("Product", product_id), "input": [{"publicationId": publication_id}]},
        )
        out = data.get("publishablePublish") or {}
        if out.get("userErrors"):
            raise ValueError(f"Shopify User Error: {out['userErrors']}")
        logger.info("[PUBLISH] product=%s publication=%s", product_id, publication_id)
        return out.get("publishable") or {}
