"""Uniswap V3 subgraph client used to find freshly created pools."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

import requests

from connectors.base import PoolIndex


NEWEST_POOLS_QUERY = """
query NewestPools($asset: String!, $first: Int!) {
  pools(
    first: $first,
    orderBy: createdAtTimestamp,
    orderDirection: desc,
    where: { or: [{ token0: $asset }, { token1: $asset }] }
  ) {
    id
    feeTier
    createdAtTimestamp
    createdAtBlockNumber
    token0 { id symbol }
    token1 { id symbol }
  }
}
"""


class SubgraphQueryError(RuntimeError):
    """The subgraph answered with GraphQL errors or an unexpected payload."""


class SubgraphPoolIndex(PoolIndex):
    """
    Reads pool-creation events from a Uniswap V3 subgraph.

    Authenticated with a bearer token (The Graph gateway API key).
    """

    def __init__(self, url: str, api_key: str, timeout_seconds: float = 15.0, session: Optional[requests.Session] = None) -> None:
        self.url = url
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    def _post(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        response = self.session.post(
            self.url,
            json={"query": query, "variables": variables},
            headers=self._headers(),
            timeout=self.timeout_seconds,
        )
        response.raise_for_status()
        payload = response.json()
        if payload.get("errors"):
            messages = "; ".join(str(e.get("message", e)) for e in payload["errors"])
            raise SubgraphQueryError(f"Subgraph query failed: {messages}")
        data = payload.get("data")
        if not isinstance(data, dict):
            raise SubgraphQueryError("Subgraph response has no data")
        return data

    def newest_pools(self, reference_asset: str, limit: int = 1) -> List[Dict[str, Any]]:
        # The subgraph stores ids lower-cased
        data = self._post(NEWEST_POOLS_QUERY, {"asset": reference_asset.lower(), "first": int(limit)})
        events: List[Dict[str, Any]] = []
        for pool in data.get("pools") or []:
            events.append({
                "pool": pool.get("id"),
                "token0": (pool.get("token0") or {}).get("id"),
                "token1": (pool.get("token1") or {}).get("id"),
                "feeTier": pool.get("feeTier"),
                "createdAtTimestamp": pool.get("createdAtTimestamp"),
                "createdAtBlockNumber": pool.get("createdAtBlockNumber"),
            })
        return events
