"""graphene_django_lifecycle_metrics — Django app declaration."""

from importlib import metadata

from django.apps import AppConfig

__version__ = metadata.version(__name__)


class GrapheneDjangoLifecycleMetricsConfig(AppConfig):
    """Django AppConfig for graphene_django_lifecycle_metrics.

    Add this app to ``INSTALLED_APPS`` in your ``settings.py``::

        INSTALLED_APPS = [
            ...
            "graphene_django_lifecycle_metrics",
        ]

    Build the lifecycle plugin from settings and hand it to the executor::

        from graphene_django_lifecycle_metrics.executor import GraphQLServer
        from graphene_django_lifecycle_metrics.middleware import plugin_from_settings

        server = GraphQLServer(schema, plugins=[plugin_from_settings()])
        await server.start()
        result = await server.execute(query, headers=request.headers)

    Configure the library via ``GRAPHQL_LIFECYCLE_METRICS`` in ``settings.py``::

        GRAPHQL_LIFECYCLE_METRICS = {
            "metrics_enabled": True,
            "service": "inventory",
            "metric_prefix": "graphql_",
            # HTTP header whose value becomes the ``app`` label:
            "app_header": "app",
            # Defaults to the installed graphql-core version:
            "server_version": None,
            "client_error_codes": ["BAD_USER_INPUT", "INVALID_CREDENTIALS"],
            "skip_metrics": {
                "QUERY_FIELD_RESOLUTION_DURATION": (
                    "graphene_django_lifecycle_metrics.metrics.skip_introspection_fields"
                ),
            },
        }
    """

    name = "graphene_django_lifecycle_metrics"
    verbose_name = "GraphQL Lifecycle Metrics"
    default_auto_field = "django.db.models.BigAutoField"


config = GrapheneDjangoLifecycleMetricsConfig  # pylint: disable=invalid-name
