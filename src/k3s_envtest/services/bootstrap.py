"""
Bootstrap orchestrator wiring webhooks into the ephemeral test cluster.

The orchestrator issues the environment's certificates, installs CRDs,
points every webhook configuration and convertible CRD at the host-side
webhook server and optionally waits for the server to answer. Steps run in
order and the first failure aborts the remaining ones; cluster state that
was already applied is left as is; the ephemeral cluster is expected to be
thrown away by the caller.
"""

import asyncio
import inspect
import shutil
import tempfile
import time
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any

from k3s_envtest.constants import (
    DEFAULT_CERT_DIR_PREFIX,
    WEBHOOK_LOCAL_HOST,
    WEBHOOK_URL_SCHEME,
)
from k3s_envtest.errors import (
    ConfigurationError,
    CRDTimeoutError,
    KubernetesAPIError,
)
from k3s_envtest.models.gvk import (
    CUSTOM_RESOURCE_DEFINITION,
    GroupVersionKind,
    object_name,
)
from k3s_envtest.models.webhook import CRDPhase, PollPolicy, WebhookKind
from k3s_envtest.observability.logging import EnvLogger
from k3s_envtest.observability.tracing import step_span, traced_step
from k3s_envtest.registry import TypeRegistry, filter_convertible_crds
from k3s_envtest.resources.manifests import ManifestCategories
from k3s_envtest.resources.patch import (
    extract_endpoint_urls,
    is_crd_established,
    patch_crd_conversion,
    patch_webhook_config,
)
from k3s_envtest.settings import Settings
from k3s_envtest.utils.certificates import CertificateBundle, issue_certificates
from k3s_envtest.utils.kubernetes import ClusterAPI, is_already_exists
from k3s_envtest.webhook.client import WebhookClient

TeardownTask = Callable[[], Awaitable[None] | None]


class EnvBootstrapper:
    """
    Sequences certificate issuance, CRD installation and webhook wiring.

    Every collaborator is passed in, including the logger, so several
    environments can run side by side in one test process.
    """

    def __init__(
        self,
        api: ClusterAPI,
        registry: TypeRegistry,
        categories: ManifestCategories,
        settings: Settings | None = None,
        env_logger: EnvLogger | None = None,
        webhook_host: str | None = None,
    ):
        """
        Initialize the bootstrapper.

        Args:
            api: Cluster access used to create, read and update objects
            registry: Registered types, used to find convertible CRDs
            categories: Manifests to install
            settings: Environment settings, defaults when omitted
            env_logger: Logger for bootstrap steps
            webhook_host: Host or IP the cluster reaches the webhook server
                through, e.g. the container network gateway
        """
        self.api = api
        self.registry = registry
        self.categories = categories
        self.settings = settings or Settings()
        self.env_logger = env_logger or EnvLogger()
        self.webhook_host = webhook_host

        self._certificates: CertificateBundle | None = None
        self._cert_dir: str | None = None
        self._crd_phases: dict[str, CRDPhase] = {}
        self._teardown_tasks: list[TeardownTask] = []

    # Accessors

    @property
    def certificates(self) -> CertificateBundle | None:
        return self._certificates

    @property
    def ca_bundle(self) -> str | None:
        """Base64 encoded CA certificate, once certificates are issued."""
        if self._certificates is None:
            return None
        return self._certificates.ca_bundle

    @property
    def cert_dir(self) -> str | None:
        return self._cert_dir

    @property
    def base_url(self) -> str:
        """URL the cluster uses to reach the webhook server."""
        if not self.webhook_host:
            raise ConfigurationError(
                "webhook host is not set",
                user_action="Pass webhook_host, e.g. the cluster network gateway IP",
            )
        host = f"[{self.webhook_host}]" if ":" in self.webhook_host else self.webhook_host
        return f"{WEBHOOK_URL_SCHEME}://{host}:{self.settings.webhook_port}"

    @property
    def crd_phases(self) -> dict[str, CRDPhase]:
        return dict(self._crd_phases)

    def add_teardown(self, task: TeardownTask) -> None:
        """Register a task to run at teardown; tasks run in reverse order."""
        self._teardown_tasks.append(task)

    # Steps

    async def start(self) -> None:
        """Issue certificates, install CRDs and, if enabled, install webhooks."""
        await self.setup_certificates()
        await self.install_crds()
        if self.settings.webhook_auto_install:
            await self.install_webhooks()

    @traced_step("setup_certificates")
    async def setup_certificates(self) -> CertificateBundle:
        """
        Issue the environment's certificates.

        Uses the configured certificate directory, or a fresh temporary one
        that is removed at teardown.
        """
        if self._certificates is not None:
            return self._certificates

        cert_dir = self.settings.cert_path
        if not cert_dir:
            cert_dir = tempfile.mkdtemp(prefix=DEFAULT_CERT_DIR_PREFIX)
            self.add_teardown(lambda: shutil.rmtree(cert_dir, ignore_errors=True))

        start = time.monotonic()
        self.env_logger.log_step_start("issue", "certificates", cert_dir)
        try:
            bundle = await asyncio.to_thread(
                issue_certificates,
                cert_dir,
                timedelta(hours=self.settings.cert_validity_hours),
            )
        except Exception as e:
            self.env_logger.log_step_error(
                "issue", "certificates", cert_dir, e, time.monotonic() - start
            )
            raise
        self.env_logger.log_step_success(
            "issue", "certificates", cert_dir, time.monotonic() - start
        )

        self._cert_dir = cert_dir
        self._certificates = bundle
        return bundle

    @traced_step("install_crds")
    async def install_crds(self) -> None:
        """Create every CRD and wait until each one is Established."""
        for crd in self.categories.crds:
            await self.install_crd(crd)

    async def install_crd(self, crd: dict[str, Any]) -> None:
        """
        Create a CRD, tolerating one that already exists, and wait until it
        is Established.

        Raises:
            CRDTimeoutError: If the CRD is not Established in time
        """
        name = object_name(crd)
        start = time.monotonic()
        self.env_logger.log_step_start("create", "CustomResourceDefinition", name)
        try:
            await asyncio.to_thread(self.api.create, crd)
        except KubernetesAPIError as e:
            if not is_already_exists(e):
                self.env_logger.log_step_error(
                    "create", "CustomResourceDefinition", name, e, time.monotonic() - start
                )
                raise
            self.env_logger.debug(
                f"CRD {name} already exists", resource_name=name
            )
        self._crd_phases[name] = CRDPhase.SUBMITTED

        await self._wait_for_crd_established(name)
        self.env_logger.log_step_success(
            "create", "CustomResourceDefinition", name, time.monotonic() - start
        )

    @traced_step("install_webhooks")
    async def install_webhooks(self) -> None:
        """
        Point webhook configurations and convertible CRDs at the host.

        Mutating configurations are installed before validating ones; one that
        already exists is replaced, so the step can run again. When
        readiness checking is enabled each configuration's endpoints must
        answer before the next one is installed. Convertible CRDs must
        already be installed; their conversion block is updated in place.
        """
        if self._certificates is None:
            raise ConfigurationError(
                "certificates have not been issued",
                user_action="Call setup_certificates() before install_webhooks()",
            )
        base_url = self.base_url
        ca_bundle = self._certificates.ca_bundle

        client: WebhookClient | None = None
        if self.settings.webhook_check_readiness:
            client = WebhookClient(
                WEBHOOK_LOCAL_HOST,
                self.settings.webhook_port,
                self._certificates.ca_cert,
                env_logger=self.env_logger,
            )

        try:
            for kind, configs in (
                (WebhookKind.MUTATING, self.categories.mutating),
                (WebhookKind.VALIDATING, self.categories.validating),
            ):
                for config in configs:
                    await self._install_webhook(
                        kind, config, base_url, ca_bundle, client
                    )
        finally:
            if client is not None:
                await client.aclose()

        convertible = filter_convertible_crds(self.registry, self.categories.crds)
        for crd in convertible:
            await self._patch_crd_conversion(object_name(crd), base_url, ca_bundle)

    async def _install_webhook(
        self,
        kind: WebhookKind,
        config: dict[str, Any],
        base_url: str,
        ca_bundle: str,
        client: WebhookClient | None,
    ) -> None:
        name = object_name(config)
        resource_kind = kind.gvk.kind
        start = time.monotonic()
        self.env_logger.log_step_start("install", resource_kind, name)
        try:
            patch_webhook_config(config, base_url, ca_bundle)
            await self._apply(config)

            if client is not None:
                endpoints = extract_endpoint_urls(config)
                await client.wait_for_endpoints(
                    endpoints.urls, self.settings.webhook_policy(), owner=str(endpoints)
                )
        except Exception as e:
            self.env_logger.log_step_error(
                "install", resource_kind, name, e, time.monotonic() - start
            )
            raise
        self.env_logger.log_step_success(
            "install", resource_kind, name, time.monotonic() - start
        )

    async def _apply(self, obj: dict[str, Any]) -> None:
        """Create ``obj``, or replace the stored object if it already exists."""
        try:
            await asyncio.to_thread(self.api.create, obj)
            return
        except KubernetesAPIError as e:
            if not is_already_exists(e):
                raise
            existing = await asyncio.to_thread(
                self.api.get, GroupVersionKind.of(obj), object_name(obj)
            )
            if existing is None:
                raise

        # The manifest itself stays free of resourceVersion so it can be created again
        metadata = dict(obj.get("metadata") or {})
        resource_version = (existing.get("metadata") or {}).get("resourceVersion")
        if resource_version:
            metadata["resourceVersion"] = resource_version
        self.env_logger.debug(
            f"{obj.get('kind')} {object_name(obj)} already exists, replacing it",
            resource_kind=obj.get("kind"),
            resource_name=object_name(obj),
        )
        await asyncio.to_thread(self.api.update, {**obj, "metadata": metadata})

    async def _patch_crd_conversion(self, name: str, base_url: str, ca_bundle: str) -> None:
        start = time.monotonic()
        self.env_logger.log_step_start("patch conversion", "CustomResourceDefinition", name)
        try:
            crd = await self._wait_for_crd_established(name)
            patch_crd_conversion(crd, base_url, ca_bundle)
            await asyncio.to_thread(self.api.update, crd)
            await self._wait_for_crd_established(name)
        except Exception as e:
            self.env_logger.log_step_error(
                "patch conversion",
                "CustomResourceDefinition",
                name,
                e,
                time.monotonic() - start,
            )
            raise
        self._crd_phases[name] = CRDPhase.CONVERSION_PATCHED
        self.env_logger.log_step_success(
            "patch conversion", "CustomResourceDefinition", name, time.monotonic() - start
        )

    async def _wait_for_crd_established(self, name: str) -> dict[str, Any]:
        """
        Poll a CRD until it reports Established; a missing CRD is not ready yet.

        Returns:
            The Established CRD as read from the cluster
        """
        policy: PollPolicy = self.settings.crd_policy()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + policy.timeout

        with step_span("crd.wait_established", tracer_name=__name__, crd=name):
            try:
                while True:
                    crd = await asyncio.to_thread(
                        self.api.get, CUSTOM_RESOURCE_DEFINITION, name
                    )
                    if crd is not None and is_crd_established(crd):
                        if self._crd_phases.get(name) != CRDPhase.CONVERSION_PATCHED:
                            self._crd_phases[name] = CRDPhase.ESTABLISHED
                        self.env_logger.debug(
                            f"CRD {name} is established", resource_name=name
                        )
                        return crd

                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        raise CRDTimeoutError(name, policy.timeout)
                    await asyncio.sleep(min(policy.interval, remaining))
            except asyncio.CancelledError as e:
                e.add_note(f"while waiting for CRD {name} to be established")
                self.env_logger.debug(
                    f"Wait for CRD {name} cancelled", resource_name=name
                )
                raise

    async def teardown(self) -> None:
        """
        Run registered teardown tasks in reverse order.

        Every task runs even if an earlier one fails.

        Raises:
            ExceptionGroup: With every failure, if any task failed
        """
        errors: list[Exception] = []
        while self._teardown_tasks:
            task = self._teardown_tasks.pop()
            try:
                result = task()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.env_logger.warning(f"Teardown task failed: {e}")
                errors.append(e)

        self._certificates = None
        if errors:
            raise ExceptionGroup("teardown failed", errors)
