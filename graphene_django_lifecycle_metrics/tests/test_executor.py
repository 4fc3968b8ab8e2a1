"""End-to-end tests running Graphene schemas through GraphQLServer."""

import asyncio
from unittest.mock import patch

import graphene
from django.test import SimpleTestCase
from graphql import GraphQLError
from prometheus_client import CollectorRegistry

from graphene_django_lifecycle_metrics.executor import GraphQLServer
from graphene_django_lifecycle_metrics.hooks import generate_hooks
from graphene_django_lifecycle_metrics.metrics import MetricsNames, build_metrics, skip_introspection_fields

SERVICE = "inventory"


class Location(graphene.ObjectType):
    name = graphene.String()


class Device(graphene.ObjectType):
    name = graphene.String()
    location = graphene.Field(Location)


class Query(graphene.ObjectType):
    devices = graphene.List(graphene.NonNull(Device))
    failing = graphene.String()
    bad_input = graphene.String()
    slow = graphene.String()

    @staticmethod
    def resolve_devices(root, info):
        return [{"name": "r1", "location": {"name": "paris"}}, {"name": "r2", "location": None}]

    @staticmethod
    def resolve_failing(root, info):
        raise RuntimeError("resolver exploded")

    @staticmethod
    def resolve_bad_input(root, info):
        raise GraphQLError("Invalid device filter", extensions={"code": "BAD_USER_INPUT"})

    @staticmethod
    async def resolve_slow(root, info):
        await asyncio.sleep(0)
        return "done"


schema = graphene.Schema(query=Query)


def _labels(operation_name=None, operation=None, app=None, **extra):
    return {
        "operationName": operation_name or "",
        "operation": operation or "",
        "app": app or "",
        "service": SERVICE,
        **extra,
    }


class GraphQLServerTestCase(SimpleTestCase):
    def setUp(self):
        self.registry = CollectorRegistry()
        self.metrics = build_metrics(registry=self.registry)
        self.server = GraphQLServer(schema, plugins=[generate_hooks(self.metrics, SERVICE, version="1.2.3")])

    def count(self, name, labels):
        return self.registry.get_sample_value(name, labels) or 0


class SuccessfulRequestTest(GraphQLServerTestCase):
    """A request without parse, validation or execution errors."""

    async def test_phases_and_field_timings(self):
        result = await self.server.execute(
            "query GetDevices { devices { name } }", operation_name="GetDevices", headers={"app": "ui"}
        )

        self.assertIsNone(result.errors)
        self.assertEqual(result.data, {"devices": [{"name": "r1"}, {"name": "r2"}]})

        # The operation kind is only known once the operation is resolved.
        early_labels = _labels("GetDevices", None, "ui")
        for counter in (
            "graphql_query_started_total",
            "graphql_query_parse_started_total",
            "graphql_query_validation_started_total",
        ):
            self.assertEqual(self.count(counter, early_labels), 1, counter)
            self.assertEqual(self.count(counter, _labels("GetDevices", "query", "ui")), 0, counter)

        labels = _labels("GetDevices", "query", "ui")
        for counter in (
            "graphql_query_resolved_total",
            "graphql_query_execution_started_total",
        ):
            self.assertEqual(self.count(counter, labels), 1, counter)

        for counter in (
            "graphql_query_parse_failed_total",
            "graphql_query_validation_failed_total",
            "graphql_query_execution_failed_total",
            "graphql_query_failed_total",
            "graphql_query_failed_by_client_total",
        ):
            self.assertEqual(self.count(counter, labels), 0, counter)

        self.assertEqual(self.count("graphql_query_duration_seconds_count", {**labels, "success": "true"}), 1)
        self.assertEqual(self.count("graphql_query_duration_seconds_count", {**labels, "success": "false"}), 0)

        devices_labels = {
            **labels,
            "fieldName": "devices",
            "parentType": "Query",
            "pathLength": "0",
            "returnType": "[Device!]",
        }
        name_labels = {**labels, "fieldName": "name", "parentType": "Device", "pathLength": "2", "returnType": "String"}
        self.assertEqual(self.count("graphql_query_field_resolution_duration_seconds_count", devices_labels), 1)
        self.assertEqual(self.count("graphql_query_field_resolution_duration_seconds_count", name_labels), 2)

    async def test_nested_fields_timed_individually(self):
        await self.server.execute("{ devices { location { name } } }")

        location_name = _labels(
            "", "query", fieldName="name", parentType="Location", pathLength="3", returnType="String"
        )
        # Only r1 has a location, so its name resolves once.
        self.assertEqual(self.count("graphql_query_field_resolution_duration_seconds_count", location_name), 1)

    async def test_async_resolver(self):
        result = await self.server.execute("query Slow { slow }", operation_name="Slow")

        self.assertEqual(result.data, {"slow": "done"})
        labels = _labels("Slow", "query", fieldName="slow", parentType="Query", pathLength="0", returnType="String")
        self.assertEqual(self.count("graphql_query_field_resolution_duration_seconds_count", labels), 1)

    async def test_concurrent_requests(self):
        await asyncio.gather(*(self.server.execute("query Slow { slow }", operation_name="Slow") for _ in range(5)))

        self.assertEqual(self.count("graphql_query_started_total", _labels("Slow")), 5)
        labels = _labels("Slow", "query")
        self.assertEqual(self.count("graphql_query_duration_seconds_count", {**labels, "success": "true"}), 5)

    async def test_emission_order(self):
        emitted = []

        def recorder(name):
            def skip(labels, context, field):  # pylint: disable=unused-argument
                emitted.append(name)
                return False

            return skip

        metrics = build_metrics(
            registry=CollectorRegistry(), skip_metrics={name: recorder(name) for name in MetricsNames}
        )
        server = GraphQLServer(schema, plugins=[generate_hooks(metrics, SERVICE, version="1.2.3")])

        await server.execute("query GetDevices { devices { name } }", operation_name="GetDevices")

        self.assertEqual(
            emitted,
            [
                MetricsNames.QUERY_STARTED,
                MetricsNames.QUERY_PARSE_STARTED,
                MetricsNames.QUERY_VALIDATION_STARTED,
                MetricsNames.QUERY_RESOLVED,
                MetricsNames.QUERY_EXECUTION_STARTED,
                # devices, then name for each of the two devices
                MetricsNames.QUERY_FIELD_RESOLUTION_DURATION,
                MetricsNames.QUERY_FIELD_RESOLUTION_DURATION,
                MetricsNames.QUERY_FIELD_RESOLUTION_DURATION,
                MetricsNames.QUERY_DURATION,
            ],
        )

    async def test_introspection_fields_skipped(self):
        metrics = build_metrics(
            registry=self.registry,
            prefix="skipping_",
            skip_metrics={MetricsNames.QUERY_FIELD_RESOLUTION_DURATION: skip_introspection_fields},
        )
        server = GraphQLServer(schema, plugins=[generate_hooks(metrics, SERVICE, version="1.2.3")])

        await server.execute("query Types { __schema { queryType { name } } }", operation_name="Types")

        field = metrics[MetricsNames.QUERY_FIELD_RESOLUTION_DURATION].instance
        parent_types = {sample.labels["parentType"] for sample in field.collect()[0].samples}
        self.assertFalse(any(parent_type.startswith("__") for parent_type in parent_types))


class FailedRequestTest(GraphQLServerTestCase):
    """Requests failing in parsing, validation, operation resolution or execution."""

    async def test_parse_failure(self):
        result = await self.server.execute("{ devices { name }")

        self.assertIsNone(result.data)
        self.assertEqual(len(result.errors), 1)

        labels = _labels()
        self.assertEqual(self.count("graphql_query_parse_started_total", labels), 1)
        self.assertEqual(self.count("graphql_query_parse_failed_total", labels), 1)
        self.assertEqual(self.count("graphql_query_validation_started_total", labels), 0)
        self.assertEqual(self.count("graphql_query_failed_total", labels), 1)
        self.assertEqual(self.count("graphql_query_duration_seconds_count", {**labels, "success": "false"}), 1)
        self.assertEqual(self.count("graphql_query_duration_seconds_count", {**labels, "success": "true"}), 0)

    async def test_validation_failure(self):
        result = await self.server.execute("{ unknownField }")

        self.assertEqual(len(result.errors), 1)
        labels = _labels()
        self.assertEqual(self.count("graphql_query_validation_failed_total", labels), 1)
        self.assertEqual(self.count("graphql_query_resolved_total", labels), 0)
        self.assertEqual(self.count("graphql_query_failed_total", labels), 1)

    async def test_unknown_operation_name(self):
        result = await self.server.execute("query GetDevices { devices { name } }", operation_name="Missing")

        self.assertIn("Unknown operation named 'Missing'", result.errors[0].message)
        labels = _labels("Missing")
        self.assertEqual(self.count("graphql_query_resolved_total", labels), 0)
        self.assertEqual(self.count("graphql_query_execution_started_total", labels), 0)
        self.assertEqual(self.count("graphql_query_failed_total", labels), 1)

    async def test_resolver_error(self):
        result = await self.server.execute("query Failing { failing }", operation_name="Failing")

        self.assertEqual(result.data, {"failing": None})
        self.assertEqual(result.errors[0].message, "resolver exploded")

        labels = _labels("Failing", "query")
        self.assertEqual(self.count("graphql_query_execution_failed_total", labels), 0)
        self.assertEqual(self.count("graphql_query_failed_total", labels), 1)
        self.assertEqual(self.count("graphql_query_failed_by_client_total", labels), 0)
        self.assertEqual(self.count("graphql_query_duration_seconds_count", {**labels, "success": "false"}), 1)

        field_labels = {**labels, "fieldName": "failing", "parentType": "Query", "pathLength": "0", "returnType": "String"}
        self.assertEqual(self.count("graphql_query_field_resolution_duration_seconds_count", field_labels), 1)

    async def test_client_error(self):
        result = await self.server.execute("query BadInput { badInput }", operation_name="BadInput")

        self.assertEqual(result.errors[0].extensions, {"code": "BAD_USER_INPUT"})
        labels = _labels("BadInput", "query")
        self.assertEqual(self.count("graphql_query_failed_by_client_total", labels), 1)
        self.assertEqual(self.count("graphql_query_failed_total", labels), 1)

    @patch("graphene_django_lifecycle_metrics.executor.execute", side_effect=RuntimeError("executor crashed"))
    async def test_execution_failure(self, _mock_execute):
        with self.assertLogs("graphene_django_lifecycle_metrics.executor", level="ERROR"):
            result = await self.server.execute("query GetDevices { devices { name } }", operation_name="GetDevices")

        self.assertIsNone(result.data)
        self.assertEqual(result.errors[0].message, "executor crashed")
        labels = _labels("GetDevices", "query")
        self.assertEqual(self.count("graphql_query_execution_started_total", labels), 1)
        self.assertEqual(self.count("graphql_query_execution_failed_total", labels), 1)
        self.assertEqual(self.count("graphql_query_failed_total", labels), 1)


class ServerLifecycleTest(GraphQLServerTestCase):
    async def test_start_and_stop(self):
        await self.server.start()
        self.assertIsNotNone(self.registry.get_sample_value("graphql_server_starting", {"version": "1.2.3"}))
        self.assertIsNone(self.registry.get_sample_value("graphql_server_closing", {"version": "1.2.3"}))

        await self.server.stop()
        self.assertIsNotNone(self.registry.get_sample_value("graphql_server_closing", {"version": "1.2.3"}))

    async def test_accepts_graphql_core_schema(self):
        server = GraphQLServer(schema.graphql_schema)
        result = await server.execute("{ devices { name } }")
        self.assertEqual(len(result.data["devices"]), 2)
