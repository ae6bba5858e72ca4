"""GitHub Actions workflow_dispatch client for provisioning a bulker worker.

The trigger is fire-and-forget: a 2xx only means GitHub accepted the
dispatch, not that the worker came up. Server errors, rate limiting and
transport failures are retried under a bounded policy; any other 4xx fails
at once.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from portcullis.core.config import Settings
from portcullis.core.errors import DispatchError
from portcullis.core.metrics import dispatch_retries
from portcullis.core.retry_config import Deadline, RetryPolicy, dispatch_retry_policy
from portcullis.core.structured_logging import get_correlation_id

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = {429}


@dataclass(frozen=True)
class DispatchTarget:
    """Repository/workflow/ref the worker deployment runs from."""
    owner: str
    repo: str
    workflow: str
    ref: str

    @property
    def path(self) -> str:
        return f"/repos/{self.owner}/{self.repo}/actions/workflows/{self.workflow}/dispatches"

    @classmethod
    def from_settings(cls, settings: Settings) -> "DispatchTarget":
        return cls(
            owner=settings.dispatch_owner,
            repo=settings.dispatch_repo,
            workflow=settings.dispatch_workflow,
            ref=settings.dispatch_ref,
        )


@dataclass
class DispatchRequest:
    organization: str
    sync_id: str
    data: str
    schema: str
    target: DispatchTarget
    correlation_id: Optional[str] = None

    def body(self) -> Dict[str, Any]:
        return {
            "ref": self.target.ref,
            "inputs": {
                "org_id": self.organization,
                "sync_id": self.sync_id,
                "data": self.data,
                "schema": self.schema,
            },
        }

    def headers(self) -> Dict[str, str]:
        # GitHub rejects undeclared workflow inputs
        if not self.correlation_id:
            return {}
        return {"X-Request-ID": self.correlation_id}


@dataclass(frozen=True)
class DispatchResult:
    accepted: bool
    attempts: int
    status_code: int


def build_http_client(settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    """Process-wide client for the GitHub API."""
    headers = {
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": settings.dispatch_api_version,
        "User-Agent": "portcullis-dispatcher",
    }
    if settings.github_token:
        headers["Authorization"] = f"Bearer {settings.github_token}"
    return httpx.AsyncClient(
        base_url=settings.github_api_url,
        headers=headers,
        timeout=settings.dispatch_timeout_seconds,
        transport=transport,
    )


class ProvisionDispatcher:
    def __init__(
        self,
        client: httpx.AsyncClient,
        target: DispatchTarget,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self._client = client
        self.target = target
        self.retry_policy = retry_policy or RetryPolicy()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "ProvisionDispatcher":
        return cls(
            build_http_client(settings, transport=transport),
            DispatchTarget.from_settings(settings),
            dispatch_retry_policy(settings),
        )

    async def close(self) -> None:
        await self._client.aclose()

    def build_request(self, organization: str, sync_id: str, data: str, schema: str) -> DispatchRequest:
        return DispatchRequest(
            organization=organization,
            sync_id=sync_id,
            data=data,
            schema=schema,
            target=self.target,
            correlation_id=get_correlation_id(),
        )

    async def trigger(self, request: DispatchRequest, deadline: Optional[Deadline] = None) -> DispatchResult:
        """POST the dispatch, retrying transient failures within the deadline."""
        deadline = deadline or Deadline.unbounded()
        policy = self.retry_policy
        attempts = 0
        last_error = "dispatch not attempted"
        last_status: Optional[int] = None

        while attempts < policy.maximum_attempts:
            if deadline.expired:
                break
            attempts += 1
            try:
                resp = await self._client.post(
                    request.target.path,
                    json=request.body(),
                    headers=request.headers(),
                    timeout=deadline.bound(self._client.timeout.read),
                )
            except httpx.HTTPError as exc:
                last_error = f"{type(exc).__name__}: {exc}"
                last_status = None
            else:
                last_status = resp.status_code
                if resp.is_success:
                    logger.info(
                        "Dispatch accepted for sync %s",
                        request.sync_id,
                        extra={"event": "dispatch_accepted", "attempts": attempts, "status_code": resp.status_code},
                    )
                    return DispatchResult(accepted=True, attempts=attempts, status_code=resp.status_code)
                last_error = _error_message(resp)
                if resp.status_code < 500 and resp.status_code not in RETRYABLE_STATUSES:
                    logger.warning(
                        "Dispatch rejected for sync %s: %s",
                        request.sync_id,
                        last_error,
                        extra={"event": "dispatch_rejected", "status_code": resp.status_code},
                    )
                    raise DispatchError(last_error, attempts=attempts, status_code=resp.status_code)

            if attempts >= policy.maximum_attempts:
                break
            dispatch_retries.inc()
            sleep_for = deadline.bound(policy.backoff(attempts))
            logger.warning(
                "Dispatch attempt %d failed: %s",
                attempts,
                last_error,
                extra={"event": "dispatch_retry", "attempt": attempts},
            )
            if sleep_for:
                await asyncio.sleep(sleep_for)

        if deadline.expired:
            last_error = f"deadline exceeded after {attempts} attempt(s): {last_error}"
        raise DispatchError(last_error, attempts=attempts, status_code=last_status)


def _error_message(resp: httpx.Response) -> str:
    try:
        payload = resp.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and payload.get("message"):
        return f"HTTP {resp.status_code}: {payload['message']}"
    text = resp.text.strip()
    return f"HTTP {resp.status_code}: {text[:300]}" if text else f"HTTP {resp.status_code}"
