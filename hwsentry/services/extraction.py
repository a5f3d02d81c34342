"""
ExtractionClient - async client for the web extraction service.

Sends a target URL and a natural-language goal, reads the server-sent event
stream, and turns the final result into a VendorResult. Every failure is
raised as one of the typed upstream errors so retry and circuit breaker
logic can classify it.
"""

import asyncio
import json
from typing import Any, Protocol

import httpx
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from hwsentry.models import VendorResult, VendorTarget
from hwsentry.services.errors import (
    MalformedResponseError,
    PermanentUpstreamError,
    RequestTimeoutError,
    TransientUpstreamError,
    UpstreamRunError,
)

DEFAULT_GOAL = (
    "Find the current price and stock availability of the product on this page. "
    "Return JSON with keys: price (number or null), currency (ISO 4217 code), "
    "inStock (boolean), stockLevel (short status text such as 'In stock' or "
    "'Pre-order'), notes (string or null)."
)


class Extractor(Protocol):
    """Anything that can turn a vendor target into a VendorResult."""

    async def extract(self, target: VendorTarget) -> VendorResult: ...


class ExtractedListing(BaseModel):
    """Result payload accepted from the extraction service."""

    model_config = ConfigDict(strict=True, populate_by_name=True, extra="ignore")

    price: int | float | None
    currency: str | None = None
    in_stock: bool = Field(alias="inStock")
    stock_level: str | None = Field(default=None, alias="stockLevel")
    notes: str | None = None


class ExtractionClient:
    """
    Client for the extraction service's streaming run endpoint.

    Usage:
        async with ExtractionClient(api_key="...") as client:
            vendor = await client.extract(VendorTarget(name="Scan", url="https://..."))
    """

    SERVICE_ID = "extraction"
    RUN_PATH = "/v1/automation/run-sse"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://agent.tinyfish.ai",
        timeout: float = 90.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http_client = http_client

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
            )
        return self._http_client

    async def extract(self, target: VendorTarget) -> VendorResult:
        """
        Run one extraction for a vendor page.

        Raises:
            RequestTimeoutError: If the run exceeds the hard timeout
            TransientUpstreamError: Network errors, 5xx/429, failed runs
            PermanentUpstreamError: Other 4xx responses
            MalformedResponseError: No result, or a result outside the schema
        """
        try:
            payload = await asyncio.wait_for(self._run(target), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise RequestTimeoutError(self.SERVICE_ID, self.timeout) from e

        listing = self._parse_listing(payload, target)
        stock_level = listing.stock_level or (
            "In stock" if listing.in_stock else "Out of stock"
        )
        return VendorResult(
            name=target.name,
            url=target.url,
            price=float(listing.price) if listing.price is not None else None,
            currency=listing.currency or target.currency,
            in_stock=listing.in_stock,
            stock_level=stock_level,
            notes=listing.notes,
        )

    async def _run(self, target: VendorTarget) -> Any:
        """POST the run request and return the final result payload."""
        client = await self._get_http_client()
        body = {"url": target.url, "goal": target.goal or DEFAULT_GOAL}
        headers = {
            "X-API-Key": self.api_key,
            "Accept": "text/event-stream",
        }

        try:
            async with client.stream(
                "POST",
                f"{self.base_url}{self.RUN_PATH}",
                json=body,
                headers=headers,
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    self._raise_for_status(response)

                async for line in response.aiter_lines():
                    event = self._parse_event(line)
                    if event is None:
                        continue
                    result = self._handle_event(event, target)
                    if result is not None:
                        return result

        except httpx.TimeoutException as e:
            raise RequestTimeoutError(self.SERVICE_ID, self.timeout) from e

        except httpx.RequestError as e:
            raise TransientUpstreamError(
                f"Transport error for {target.name}: {e}", service_id=self.SERVICE_ID
            ) from e

        raise MalformedResponseError(
            f"Stream for {target.name} ended without a result",
            service_id=self.SERVICE_ID,
        )

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        message = f"HTTP {status}: {response.text[:200]}"
        if status >= 500 or status == 429:
            raise TransientUpstreamError(message, service_id=self.SERVICE_ID)
        raise PermanentUpstreamError(
            message, service_id=self.SERVICE_ID, status_code=status
        )

    @staticmethod
    def _parse_event(line: str) -> dict[str, Any] | None:
        """Decode one SSE line. Non-data lines and keep-alives yield None."""
        line = line.strip()
        if not line.startswith("data:"):
            return None
        data = line[len("data:") :].strip()
        if not data:
            return None
        try:
            event = json.loads(data)
        except json.JSONDecodeError:
            logger.debug(f"Skipping non-JSON event line: {data[:80]}")
            return None
        return event if isinstance(event, dict) else None

    def _handle_event(self, event: dict[str, Any], target: VendorTarget) -> Any:
        event_type = str(event.get("type", "")).upper()

        if event_type == "ERROR":
            raise UpstreamRunError(
                f"Extraction run for {target.name} failed: "
                f"{event.get('message') or event.get('error') or 'unknown error'}",
                service_id=self.SERVICE_ID,
            )

        if event_type != "COMPLETE":
            return None

        status = str(event.get("status", "COMPLETED")).upper()
        if status != "COMPLETED":
            raise UpstreamRunError(
                f"Extraction run for {target.name} finished with status {status}",
                service_id=self.SERVICE_ID,
            )

        if "resultJson" not in event:
            raise MalformedResponseError(
                f"Completion event for {target.name} carried no result",
                service_id=self.SERVICE_ID,
            )
        return event["resultJson"]

    def _parse_listing(self, payload: Any, target: VendorTarget) -> ExtractedListing:
        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError as e:
                raise MalformedResponseError(
                    f"Result for {target.name} is not JSON",
                    service_id=self.SERVICE_ID,
                ) from e

        if not isinstance(payload, dict):
            raise MalformedResponseError(
                f"Result for {target.name} is not an object",
                service_id=self.SERVICE_ID,
            )

        try:
            return ExtractedListing.model_validate(payload)
        except ValidationError as e:
            raise MalformedResponseError(
                f"Result for {target.name} does not match the listing schema: "
                f"{e.error_count()} errors",
                service_id=self.SERVICE_ID,
            ) from e

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.debug("ExtractionClient closed")

    async def __aenter__(self) -> "ExtractionClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()
