"""
HTTPS client for probing the host-side webhook server.

After a webhook configuration is installed, each of its endpoints is probed
with a synthetic admission review until the server answers. Any answer below
500 counts as healthy: a webhook that rejects the empty review is still up.
The client trusts only the environment's CA, so a successful probe also
proves the serving certificate chain the API server will see.
"""

import asyncio
import logging
import ssl
from typing import Any
from urllib.parse import urlsplit

import httpx

from k3s_envtest.constants import (
    HEALTH_CHECK_REVIEW_UID,
    WEBHOOK_DEFAULT_PATH,
    WEBHOOK_URL_SCHEME,
)
from k3s_envtest.errors import EndpointTimeoutError, NetworkError
from k3s_envtest.models.webhook import PollPolicy
from k3s_envtest.observability.logging import EnvLogger
from k3s_envtest.observability.tracing import step_span

logger = logging.getLogger(__name__)


def new_health_check_review() -> dict[str, Any]:
    """Well-formed but empty CREATE admission review used as probe payload."""
    return {
        "apiVersion": "admission.k8s.io/v1",
        "kind": "AdmissionReview",
        "request": {
            "uid": HEALTH_CHECK_REVIEW_UID,
            "operation": "CREATE",
            "object": {},
        },
    }


def _normalize_path(path: str | None) -> str:
    if not path:
        return WEBHOOK_DEFAULT_PATH
    if not path.startswith("/"):
        return f"/{path}"
    return path


class WebhookClient:
    """
    Client for the webhook server running on the host.

    The underlying ``httpx.AsyncClient`` and its SSL context are created once
    and shared by every probe. Use as an async context manager, or call
    ``aclose()`` when done.
    """

    def __init__(
        self,
        host: str,
        port: int,
        ca_cert: bytes,
        env_logger: EnvLogger | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the webhook client.

        Args:
            host: Host or IP address the webhook server listens on
            port: Webhook server port
            ca_cert: PEM encoded CA certificate the server chain must verify against
            env_logger: Logger for probe attempts
            transport: Custom transport, used by tests
        """
        self.host = host
        self.port = port
        self.env_logger = env_logger or EnvLogger(logger=logger)

        context = ssl.create_default_context(cadata=ca_cert.decode("ascii"))
        context.minimum_version = ssl.TLSVersion.TLSv1_2

        self._client = httpx.AsyncClient(
            base_url=self.address,
            verify=context,
            transport=transport,
        )

    @property
    def address(self) -> str:
        """Base URL of the webhook server."""
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{WEBHOOK_URL_SCHEME}://{host}:{self.port}"

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "WebhookClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def call(
        self, path: str, review: dict[str, Any], timeout: float
    ) -> dict[str, Any] | None:
        """
        POST an admission review to ``path``.

        Args:
            path: Request path; empty means ``/``
            review: Admission review document
            timeout: Seconds the request may take

        Returns:
            The decoded response body, or None if it is not JSON

        Raises:
            NetworkError: On transport failure or a 5xx response
        """
        path = _normalize_path(path)
        url = f"{self.address}{path}"

        try:
            response = await self._client.post(path, json=review, timeout=timeout)
        except httpx.TimeoutException as e:
            raise NetworkError(
                f"request to {url} timed out after {timeout:g}s", url=url, cause=e
            ) from e
        except httpx.HTTPError as e:
            raise NetworkError(f"request to {url} failed: {e}", url=url, cause=e) from e

        if response.status_code >= 500:
            raise NetworkError(
                f"webhook {url} returned a server error",
                url=url,
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError:
            return None

    async def wait_for_endpoint(
        self, path: str, policy: PollPolicy, owner: str | None = None
    ) -> int:
        """
        Probe ``path`` until it answers with a status below 500.

        Each attempt is bounded by ``min(call_timeout, remaining)`` so a hung
        call cannot consume the whole timeout. Cancellation of the awaiting
        task aborts the attempt in flight and propagates unchanged.

        Args:
            path: Endpoint path on this client's address
            policy: Poll interval and timeouts
            owner: Webhook configuration declaring the endpoint, for errors

        Returns:
            Number of attempts it took

        Raises:
            EndpointTimeoutError: If the endpoint is not healthy within
                ``policy.timeout``
        """
        path = _normalize_path(path)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + policy.timeout
        review = new_health_check_review()
        attempts = 0
        last_error: Exception | None = None

        with step_span(
            "webhook.wait_for_endpoint",
            tracer_name=__name__,
            endpoint=path,
            timeout=policy.timeout,
        ) as span:
            try:
                while True:
                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        raise EndpointTimeoutError(
                            path, policy.timeout, attempts, last_error, owner=owner
                        )

                    attempts += 1
                    attempt_timeout = min(policy.call_timeout, remaining)
                    try:
                        async with asyncio.timeout(attempt_timeout):
                            await self.call(path, review, attempt_timeout)
                    except NetworkError as e:
                        last_error = e
                        self.env_logger.log_probe_attempt(
                            path, attempts, error=e, http_status=e.status_code
                        )
                    except TimeoutError as e:
                        last_error = NetworkError(
                            f"attempt timed out after {attempt_timeout:g}s",
                            url=f"{self.address}{path}",
                            cause=e,
                        )
                        self.env_logger.log_probe_attempt(path, attempts, error=last_error)
                    else:
                        self.env_logger.log_probe_attempt(path, attempts)
                        span.set_attribute("k3senv.attempts", attempts)
                        return attempts

                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        raise EndpointTimeoutError(
                            path, policy.timeout, attempts, last_error, owner=owner
                        )
                    await asyncio.sleep(min(policy.interval, remaining))
            except asyncio.CancelledError as e:
                # Must stay the exact CancelledError so enclosing
                # asyncio.timeout scopes convert their expiry to TimeoutError.
                e.add_note(
                    f"while waiting for webhook endpoint {path} "
                    f"after {attempts} attempts"
                )
                span.set_attribute("k3senv.attempts", attempts)
                self.env_logger.debug(
                    f"Wait for webhook endpoint {path} cancelled after {attempts} attempts",
                    endpoint=path,
                    attempt=attempts,
                )
                raise

    async def wait_for_endpoints(
        self,
        urls: list[str] | tuple[str, ...],
        policy: PollPolicy,
        owner: str | None = None,
    ) -> None:
        """
        Wait for every URL's path to become healthy, one endpoint at a time.

        ``policy.timeout`` applies to each endpoint separately. Only the path
        of each URL is used; requests always go to this client's address.
        ``owner`` names the webhook configuration in timeout errors.
        """
        for url in urls:
            path = _normalize_path(urlsplit(url).path)
            self.env_logger.debug(
                f"Waiting for webhook endpoint {path}", endpoint=path
            )
            attempts = await self.wait_for_endpoint(path, policy, owner=owner)
            self.env_logger.info(
                f"Webhook endpoint {path} ready after {attempts} attempts",
                endpoint=path,
                attempt=attempts,
            )
