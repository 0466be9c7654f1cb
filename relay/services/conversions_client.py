"""
Meta Conversions API Client

Posts conversion events to the Graph API with a bounded retry loop.
Delivery is best effort: failures are logged and reported through the
returned DeliveryResult, never raised to the webhook handler.
"""

import asyncio
from typing import Any, Dict, Optional

import httpx

from relay.config import Settings
from relay.models.conversion import ConversionPayload, DeliveryResult
from relay.utils.logging_config import get_logger
from relay.utils.retry import RetryPolicy

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


class ConversionsApiClient:
    """
    Client for the Conversions API events endpoint.

    Attributes:
        pixel_id: Pixel / dataset ID events are sent to
        retry_policy: Attempt bound and backoff between attempts
        timeout: Per-attempt HTTP timeout in seconds
    """

    def __init__(
        self,
        pixel_id: str,
        access_token: str,
        api_version: str = "v20.0",
        api_host: str = "graph.facebook.com",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        retry_policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.pixel_id = pixel_id
        self._access_token = access_token
        self.api_version = api_version
        self.api_host = api_host
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self._transport = transport

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "ConversionsApiClient":
        return cls(
            pixel_id=settings.fb_pixel_id,
            access_token=settings.fb_access_token,
            api_version=settings.graph_api_version,
            api_host=settings.graph_api_host,
            timeout=settings.delivery_timeout_seconds,
            retry_policy=RetryPolicy(
                max_attempts=settings.delivery_max_attempts,
                backoff=settings.delivery_backoff,
                backoff_base=settings.delivery_backoff_base,
                backoff_max=settings.delivery_backoff_max,
                jitter=settings.delivery_backoff_jitter,
            ),
            transport=transport,
        )

    @property
    def events_url(self) -> str:
        return f"https://{self.api_host}/{self.api_version}/{self.pixel_id}/events"

    @property
    def max_blocking_seconds(self) -> float:
        """Longest a single send_event call can take"""
        return self.retry_policy.max_blocking_seconds(self.timeout)

    def _get_http_client(self) -> httpx.AsyncClient:
        """
        Create a fresh AsyncClient.
        One client per delivery avoids sharing connections across Lambda
        event loops.
        """
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    @staticmethod
    def build_request_body(payload: ConversionPayload) -> Dict[str, Any]:
        """
        Wrap one event in the ``data`` array.
        The Graph API reads test_event_code from the top level of the body.
        """
        body: Dict[str, Any] = {"data": [payload.to_event_dict()]}
        if payload.test_event_code:
            body["test_event_code"] = payload.test_event_code
        return body

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text

    async def send_event(
        self,
        payload: ConversionPayload,
        event_name: Optional[str] = None,
    ) -> DeliveryResult:
        """
        Deliver one event, retrying transport errors and non-2xx responses.

        Args:
            payload: Event to deliver
            event_name: Name used in log messages (defaults to payload.event_name)

        Returns:
            DeliveryResult describing the final attempt
        """
        event_name = event_name or payload.event_name
        body = self.build_request_body(payload)
        max_attempts = self.retry_policy.max_attempts

        last_status: Optional[int] = None
        last_body: Any = None

        async with self._get_http_client() as client:
            for attempt in range(max_attempts):
                try:
                    # httpx timeouts apply per phase; wait_for bounds the whole attempt
                    response = await asyncio.wait_for(
                        client.post(
                            self.events_url,
                            params={"access_token": self._access_token},
                            json=body,
                            headers={"Content-Type": "application/json"},
                        ),
                        timeout=self.timeout,
                    )
                    last_status = response.status_code
                    last_body = self._parse_body(response)

                    if response.is_success:
                        logger.info(
                            f"Sent {event_name} to Conversions API",
                            extra={
                                "event_name": event_name,
                                "event_id": payload.event_id,
                                "status_code": last_status,
                                "attempts": attempt + 1,
                                "fb_response": last_body,
                            },
                        )
                        return DeliveryResult(
                            succeeded=True,
                            http_status=last_status,
                            response_body=last_body,
                            attempts_made=attempt + 1,
                        )

                    failure = f"HTTP {last_status}"

                except asyncio.TimeoutError:
                    last_status = None
                    last_body = None
                    failure = f"attempt exceeded {self.timeout}s"

                except httpx.HTTPError as e:
                    # Transport failure: no status from this attempt
                    last_status = None
                    last_body = None
                    failure = f"{type(e).__name__}: {e}"

                if attempt < max_attempts - 1:
                    backoff_time = self.retry_policy.delay_for(attempt)
                    logger.warning(
                        f"Attempt {attempt + 1}/{max_attempts} to send {event_name} failed: "
                        f"{failure}. Retrying in {backoff_time:.2f}s...",
                        extra={
                            "event_name": event_name,
                            "event_id": payload.event_id,
                            "attempt": attempt + 1,
                            "max_attempts": max_attempts,
                            "backoff_time": backoff_time,
                            "error": failure,
                        },
                    )
                    if backoff_time > 0:
                        await asyncio.sleep(backoff_time)

        logger.error(
            f"Giving up on {event_name} after {max_attempts} attempts",
            extra={
                "event_name": event_name,
                "event_id": payload.event_id,
                "max_attempts": max_attempts,
                "status_code": last_status,
                "fb_response": last_body,
                "error": failure,
            },
        )
        return DeliveryResult(
            succeeded=False,
            http_status=last_status,
            response_body=last_body,
            attempts_made=max_attempts,
        )
