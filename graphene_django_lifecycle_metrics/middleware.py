"""Field resolution middleware and settings for the lifecycle metrics plugin."""

from inspect import isawaitable

from graphql import GraphQLResolveInfo
from prometheus_client import REGISTRY

from graphene_django_lifecycle_metrics.hooks import CLIENT_ERRORS, generate_hooks
from graphene_django_lifecycle_metrics.metrics import (
    DEFAULT_DURATION_BUCKETS,
    DEFAULT_FIELD_RESOLUTION_BUCKETS,
    MetricsNames,
    always_skip,
    build_metrics,
)

_DEFAULT_SETTINGS = {
    "metrics_enabled": True,
    "service": "graphql",
    "metric_prefix": "graphql_",
    "app_header": "app",
    "server_version": None,
    "client_error_codes": sorted(CLIENT_ERRORS),
    "duration_buckets": DEFAULT_DURATION_BUCKETS,
    "field_resolution_buckets": DEFAULT_FIELD_RESOLUTION_BUCKETS,
    "skip_metrics": {},
}


def _get_app_settings():
    """Load lifecycle metrics settings from ``settings.GRAPHQL_LIFECYCLE_METRICS``.

    Falls back to built-in defaults for any key not present in the dict.

    Returns:
        dict: Resolved settings merged with defaults.
    """
    from django.conf import settings  # pylint: disable=import-outside-toplevel

    user_config = getattr(settings, "GRAPHQL_LIFECYCLE_METRICS", {})
    return {**_DEFAULT_SETTINGS, **user_config}


def _resolve_skip_metrics(config):
    """Map configured skip predicates (callables or dotted paths) onto :class:`MetricsNames`."""
    from django.utils.module_loading import import_string  # pylint: disable=import-outside-toplevel

    if not config.get("metrics_enabled", True):
        return {name: always_skip for name in MetricsNames}

    skip_metrics = {}
    for name, predicate in config.get("skip_metrics", {}).items():
        if not isinstance(name, MetricsNames):
            name = MetricsNames[name]
        if isinstance(predicate, str):
            predicate = import_string(predicate)
        skip_metrics[name] = predicate
    return skip_metrics


def plugin_from_settings(registry=REGISTRY):
    """Build the metrics registry and lifecycle plugin described by Django settings.

    Args:
        registry: The ``CollectorRegistry`` to register the metrics into.

    Returns:
        LifecycleMetricsPlugin: Ready to be passed to :class:`~.executor.GraphQLServer`.
    """
    config = _get_app_settings()
    metrics = build_metrics(
        registry=registry,
        prefix=config["metric_prefix"],
        skip_metrics=_resolve_skip_metrics(config),
        duration_buckets=config["duration_buckets"],
        field_resolution_buckets=config["field_resolution_buckets"],
    )
    return generate_hooks(
        metrics,
        config["service"],
        version=config["server_version"],
        app_header=config["app_header"],
        client_error_codes=config["client_error_codes"],
    )


class LifecycleFieldMiddleware:  # pylint: disable=too-few-public-methods
    """graphql-core middleware that times every field resolution of one request.

    The timer wraps the field's own resolver, including awaiting an async
    result. Child fields are resolved by the executor afterwards and get
    their own timings.

    Args:
        execution_listener: The listener returned by ``execution_did_start``.
    """

    def __init__(self, execution_listener):
        self.execution_listener = execution_listener

    def resolve(self, next: callable, root: object, info: GraphQLResolveInfo, **kwargs: object) -> object:  # pylint: disable=redefined-builtin
        """Resolve the field and report its end to the execution listener.

        Args:
            next (callable): Callable to continue the resolution chain.
            root (object): Parent resolved value. None for top-level fields.
            info (GraphQLResolveInfo): GraphQL resolve info for the field.
            **kwargs (object): Field arguments.

        Returns:
            object: The result of the resolver, or an awaitable of it.
        """
        field_did_resolve = self.execution_listener.will_resolve_field(info)

        try:
            result = next(root, info, **kwargs)
        except Exception as error:
            field_did_resolve(error)
            raise

        if isawaitable(result):
            return self._await_result(result, field_did_resolve)

        field_did_resolve(None, result)
        return result

    @staticmethod
    async def _await_result(result, field_did_resolve):
        try:
            value = await result
        except Exception as error:
            field_did_resolve(error)
            raise
        field_did_resolve(None, value)
        return value
