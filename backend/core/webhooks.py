"""n8n webhook dispatcher.

Lifecycle transitions notify external n8n workflows:

    POST {N8N_URL}/webhook/{workflowId}
    n8n-webhook-api-key: {N8N_WEBHOOK_API_KEY}
    {"submissionContext": {...}}

All targets of one dispatch fire concurrently; a failing target never
stops the others. Each call has a bounded timeout and is retried at most
``max_retries`` times on transport errors and 5xx responses.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Iterable, Optional

import httpx
import structlog

from app.config import get_settings
from core.exceptions import ConfigurationMissingError, WebhookDispatchError

logger = structlog.get_logger(__name__)

API_KEY_HEADER = "n8n-webhook-api-key"


@dataclass
class DeliveryResult:
    """Outcome of a single webhook call."""

    workflow_id: str
    success: bool
    status_code: Optional[int] = None
    attempts: int = 1
    error: Optional[str] = None


def binding_ids(*collections: Iterable[Any]) -> list[str]:
    """Collect n8n workflow ids from bindings, keeping first-seen order.

    Accepts plain id strings or binding rows exposing ``n8n_workflow``.
    """
    seen: dict[str, None] = {}
    for collection in collections:
        for item in collection or []:
            if isinstance(item, str):
                workflow_id = item
            else:
                workflow_id = item.n8n_workflow.workflow_id
            seen.setdefault(workflow_id, None)
    return list(seen)


class WebhookDispatcher:
    """Fan-out notifier for n8n webhooks."""

    def __init__(
        self,
        base_url: Optional[str],
        api_key: Optional[str],
        timeout: float = 10.0,
        max_retries: int = 1,
        retry_delay: float = 0.5,
        fail_on_error: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key or ""
        self.timeout = timeout
        self.max_retries = max(0, max_retries)
        self.retry_delay = retry_delay
        self.fail_on_error = fail_on_error
        self.transport = transport

    @classmethod
    def from_settings(cls, transport: Optional[httpx.AsyncBaseTransport] = None) -> "WebhookDispatcher":
        settings = get_settings()
        return cls(
            base_url=settings.N8N_URL,
            api_key=settings.N8N_WEBHOOK_API_KEY,
            timeout=settings.WEBHOOK_TIMEOUT,
            max_retries=settings.WEBHOOK_MAX_RETRIES,
            retry_delay=settings.WEBHOOK_RETRY_DELAY,
            fail_on_error=settings.WEBHOOK_ERRORS_FAIL_OPERATION,
            transport=transport,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self.api_key)

    def url_for(self, workflow_id: str) -> str:
        return f"{self.base_url}/webhook/{workflow_id}"

    async def dispatch(self, workflow_ids: Iterable[str], context: dict) -> list[DeliveryResult]:
        """Post ``context`` to every n8n workflow in ``workflow_ids``.

        Args:
            workflow_ids: External n8n workflow ids (duplicates are sent once)
            context: JSON-serializable submission context

        Returns:
            One DeliveryResult per target

        Raises:
            ConfigurationMissingError: If there are targets but n8n is not configured
            WebhookDispatchError: If any target failed and ``fail_on_error`` is set
        """
        targets = binding_ids(workflow_ids)
        if not targets:
            return []
        if not self.is_configured:
            raise ConfigurationMissingError()

        payload = {"submissionContext": context}
        headers = {"Content-Type": "application/json", API_KEY_HEADER: self.api_key}

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            results = await asyncio.gather(
                *(self._send(client, workflow_id, payload, headers) for workflow_id in targets)
            )

        failed = [r.workflow_id for r in results if not r.success]
        logger.info(
            "webhooks dispatched",
            event=context.get("event"),
            targets=len(targets),
            failed=len(failed),
        )
        if failed:
            if self.fail_on_error:
                raise WebhookDispatchError(failed)
            logger.warning("webhook failures ignored", failed_ids=failed)
        return list(results)

    async def _send(
        self,
        client: httpx.AsyncClient,
        workflow_id: str,
        payload: dict,
        headers: dict,
    ) -> DeliveryResult:
        url = self.url_for(workflow_id)
        attempt = 0
        while True:
            attempt += 1
            try:
                response = await client.post(url, json=payload, headers=headers)
                if response.status_code < 500:
                    response.raise_for_status()
                    return DeliveryResult(workflow_id, True, response.status_code, attempt)
                error = f"HTTP {response.status_code}"
                status_code: Optional[int] = response.status_code
            except httpx.HTTPStatusError as e:
                # 4xx: the target rejected the call, retrying will not help
                logger.warning("webhook rejected", workflow_id=workflow_id, status=e.response.status_code)
                return DeliveryResult(workflow_id, False, e.response.status_code, attempt, str(e))
            except httpx.TransportError as e:
                error = f"{type(e).__name__}: {e}"
                status_code = None

            if attempt > self.max_retries:
                logger.error("webhook failed", workflow_id=workflow_id, attempts=attempt, error=error)
                return DeliveryResult(workflow_id, False, status_code, attempt, error)

            logger.warning("webhook retry", workflow_id=workflow_id, attempt=attempt, error=error)
            if self.retry_delay > 0:
                await asyncio.sleep(self.retry_delay)


def get_webhook_dispatcher() -> WebhookDispatcher:
    """FastAPI dependency returning a dispatcher configured from settings."""
    return WebhookDispatcher.from_settings()
