"""Lifecycle hooks turning GraphQL request phases into Prometheus metrics.

:func:`generate_hooks` returns a plugin whose callbacks mirror the phases a
GraphQL server goes through. Each callback records one or more metrics via
:func:`~graphene_django_lifecycle_metrics.metrics.action_metric`; recording is
best-effort and never raises into the request.
"""

import logging
import time
from importlib import metadata

from graphene_django_lifecycle_metrics.context import FieldDescriptor, RequestContext
from graphene_django_lifecycle_metrics.labels import labels_from_context, labels_from_field
from graphene_django_lifecycle_metrics.metrics import MetricsNames, action_metric

logger = logging.getLogger(__name__)

CLIENT_ERRORS = frozenset(("BAD_USER_INPUT", "INVALID_CREDENTIALS"))


def _now_ms():
    return time.time() * 1000


def _monotonic_ms():
    return time.monotonic() * 1000


def get_graphql_core_version():
    """Return the installed graphql-core version, used as the ``version`` label."""
    return metadata.version("graphql-core")


def _error_code(error):
    extensions = getattr(error, "extensions", None) or {}
    return extensions.get("code")


class LifecycleMetricsPlugin:
    """Server-level hooks; one instance serves every request of a process.

    Args:
        metrics: Read-only registry built by :func:`~.metrics.build_metrics`.
        service: Logical service name added to every request label set.
        version: Server version label. Defaults to the graphql-core version.
        app_header: HTTP header providing the ``app`` label.
        client_error_codes: Error codes that count as client failures.
    """

    def __init__(self, metrics, service, version=None, app_header="app", client_error_codes=CLIENT_ERRORS):
        self.metrics = metrics
        self.service = service
        self.version = version or get_graphql_core_version()
        self.app_header = app_header
        self.client_error_codes = frozenset(client_error_codes)

    def action_metric(self, name, labels, value=None, context=None, field=None):
        """Record a metric, logging instead of raising on failure.

        ``labels`` is a dict or a callable returning one; a callable is
        evaluated inside the guard so host objects failing to provide label
        values cannot break the request.
        """
        try:
            if callable(labels):
                labels = labels()
            action_metric(self.metrics, name, labels, value=value, context=context, field=field)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Failed to record %s", name)

    def context_labels(self, context: RequestContext):
        return labels_from_context(context, self.service, self.app_header)

    async def server_will_start(self):
        logger.info("GraphQL server starting (version %s)", self.version)
        self.action_metric(MetricsNames.SERVER_STARTING, {"version": self.version}, value=_now_ms())
        return ServerListener(self)

    async def request_did_start(self, context):
        listener = RequestListener(self, request_start=_monotonic_ms())
        self.action_metric(MetricsNames.QUERY_STARTED, lambda: self.context_labels(context), context=context)
        return listener


class ServerListener:  # pylint: disable=too-few-public-methods
    def __init__(self, plugin):
        self.plugin = plugin

    async def server_will_stop(self):
        logger.info("GraphQL server closing (version %s)", self.plugin.version)
        self.plugin.action_metric(MetricsNames.SERVER_CLOSING, {"version": self.plugin.version}, value=_now_ms())


class RequestListener:
    """Per-request hooks; holds the request start time."""

    def __init__(self, plugin, request_start):
        self.plugin = plugin
        self.request_start = request_start

    def _record(self, name, context, **extra_labels):
        self.plugin.action_metric(
            name, lambda: {**self.plugin.context_labels(context), **extra_labels}, context=context
        )

    async def parsing_did_start(self, context):
        self._record(MetricsNames.QUERY_PARSE_STARTED, context)

        async def parsing_did_end(error=None):
            if error is not None:
                self._record(MetricsNames.QUERY_PARSE_FAILED, context)

        return parsing_did_end

    async def validation_did_start(self, context):
        self._record(MetricsNames.QUERY_VALIDATION_STARTED, context)

        async def validation_did_end(errors=None):
            if errors:
                self._record(MetricsNames.QUERY_VALIDATION_FAILED, context)

        return validation_did_end

    async def did_resolve_operation(self, context):
        self._record(MetricsNames.QUERY_RESOLVED, context)

    async def execution_did_start(self, context):
        self._record(MetricsNames.QUERY_EXECUTION_STARTED, context)
        return ExecutionListener(self.plugin, context)

    async def did_encounter_errors(self, context):
        request_end = _monotonic_ms()
        has_client_error = any(_error_code(error) in self.plugin.client_error_codes for error in context.errors or ())

        if has_client_error:
            self._record(MetricsNames.QUERY_FAILED_BY_CLIENT, context)

        self._record(MetricsNames.QUERY_FAILED, context)

        self.plugin.action_metric(
            MetricsNames.QUERY_DURATION,
            lambda: {**self.plugin.context_labels(context), "success": "false"},
            value=request_end - self.request_start,
            context=context,
        )

    async def will_send_response(self, context):
        request_end = _monotonic_ms()

        if len(context.errors or ()) == 0:
            self.plugin.action_metric(
                MetricsNames.QUERY_DURATION,
                lambda: {**self.plugin.context_labels(context), "success": "true"},
                value=request_end - self.request_start,
                context=context,
            )


class ExecutionListener:
    def __init__(self, plugin, context):
        self.plugin = plugin
        self.context = context

    def will_resolve_field(self, info: FieldDescriptor):
        """Start timing one field; call the returned function once it has resolved."""
        field_resolve_start = _monotonic_ms()

        def field_did_resolve(error=None, result=None):  # pylint: disable=unused-argument
            field_resolve_end = _monotonic_ms()
            self.plugin.action_metric(
                MetricsNames.QUERY_FIELD_RESOLUTION_DURATION,
                lambda: {**self.plugin.context_labels(self.context), **labels_from_field(info)},
                value=field_resolve_end - field_resolve_start,
                context=self.context,
                field=info,
            )

        return field_did_resolve

    async def execution_did_end(self, error=None):
        if error is not None:
            self.plugin.action_metric(
                MetricsNames.QUERY_EXECUTION_FAILED,
                lambda: self.plugin.context_labels(self.context),
                context=self.context,
            )


def generate_hooks(metrics, service, **kwargs):
    """Build the lifecycle plugin for ``metrics``; see :class:`LifecycleMetricsPlugin`."""
    return LifecycleMetricsPlugin(metrics, service, **kwargs)
