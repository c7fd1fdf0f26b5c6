"""
ERP / Fulfillment Backend Client

The ERP is the system of record for shipping and accounting. Settlements are
sent as pre-serialized JSON text so the bytes pushed are exactly the bytes
stored as the purchase's settlement snapshot.
"""

from typing import Any, Dict, Optional, Protocol

import httpx
import structlog

from settlement.errors import ErpError

logger = structlog.get_logger(__name__)


class ErpClient(Protocol):
    """Settlement sink."""

    async def push_settlement(self, endpoint_name: str, payload_json: str) -> Dict[str, Any]:
        ...

    async def aclose(self) -> None:
        ...


class HttpErpClient:
    """POSTs settlement payloads to `{base_url}{endpoint_name}`."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        api_key_header: str = "X-Api-Key",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not base_url.endswith("/"):
            base_url = f"{base_url}/"
        self.base_url = base_url
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={api_key_header: api_key, "Content-Type": "application/json"},
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def push_settlement(self, endpoint_name: str, payload_json: str) -> Dict[str, Any]:
        """
        Push a serialized settlement payload.

        Args:
            endpoint_name: ERP endpoint relative to the base URL
            payload_json: Exact JSON text to send

        Returns:
            The ERP acknowledgement body

        Raises:
            ErpError: On timeout, transport failure or non-2xx response
        """
        try:
            response = await self._client.post(endpoint_name, content=payload_json.encode("utf-8"))
        except httpx.TimeoutException as e:
            raise ErpError(f"ERP timed out on {endpoint_name}") from e
        except httpx.HTTPError as e:
            raise ErpError(f"ERP unreachable on {endpoint_name}: {e}") from e

        if response.status_code >= 400:
            logger.error(
                "ERP rejected settlement",
                endpoint=endpoint_name,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise ErpError(
                f"ERP rejected settlement with status {response.status_code}",
                upstream_status=response.status_code,
            )

        try:
            return response.json()
        except ValueError:
            return {"raw": response.text}
