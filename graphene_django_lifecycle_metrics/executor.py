"""A small asyncio GraphQL server driving graphql-core through the lifecycle hooks.

The server runs every request through the phases the plugins observe, in a
fixed order::

    request_did_start -> parsing -> validation -> did_resolve_operation
        -> execution (per-field middleware) -> did_encounter_errors
        -> will_send_response

Failures are collected on the request context as ``GraphQLError`` objects and
returned in the ``ExecutionResult``; they never raise to the caller.
"""

import logging
from inspect import isawaitable

from graphql import ExecutionResult, GraphQLError, execute, get_operation_ast, parse, validate

from graphene_django_lifecycle_metrics.context import GraphQLRequestContext
from graphene_django_lifecycle_metrics.middleware import LifecycleFieldMiddleware

logger = logging.getLogger(__name__)


class GraphQLServer:
    """Execute GraphQL requests against ``schema`` while notifying ``plugins``.

    Args:
        schema: A graphql-core ``GraphQLSchema`` or a Graphene ``Schema``.
        plugins: Lifecycle plugins such as
            :class:`~graphene_django_lifecycle_metrics.hooks.LifecycleMetricsPlugin`.
    """

    def __init__(self, schema, plugins=()):
        self.schema = getattr(schema, "graphql_schema", schema)
        self.plugins = list(plugins)
        self._server_listeners = []

    async def start(self):
        for plugin in self.plugins:
            self._server_listeners.append(await plugin.server_will_start())

    async def stop(self):
        while self._server_listeners:
            listener = self._server_listeners.pop()
            await listener.server_will_stop()

    async def execute(  # pylint: disable=too-many-arguments
        self, query, variables=None, operation_name=None, headers=None, context_value=None, root_value=None
    ):
        """Run one request through every phase.

        Args:
            query (str): The GraphQL document text.
            variables (dict): Variable values for the operation.
            operation_name (str): Operation to run when the document has several.
            headers (Mapping): HTTP headers of the request, e.g. Django's ``request.headers``.
            context_value: Passed to resolvers as ``info.context``.
            root_value: Root object passed to top-level resolvers.

        Returns:
            ExecutionResult: The response sent to the client.
        """
        context = GraphQLRequestContext(
            query=query,
            variables=variables,
            operation_name=operation_name,
            headers=headers or {},
            context_value=context_value,
        )
        listeners = [await plugin.request_did_start(context) for plugin in self.plugins]

        if await self._parse(context, listeners) and await self._validate(context, listeners):
            if await self._resolve_operation(context, listeners):
                await self._execute(context, listeners, root_value)

        if context.errors:
            for listener in listeners:
                await listener.did_encounter_errors(context)

        if context.response is None:
            context.response = ExecutionResult(data=None, errors=list(context.errors))

        for listener in listeners:
            await listener.will_send_response(context)
        return context.response

    @staticmethod
    async def _parse(context, listeners):
        parsing_did_end = [await listener.parsing_did_start(context) for listener in listeners]
        error = None
        try:
            context.document = parse(context.query)
        except GraphQLError as syntax_error:
            error = syntax_error
            context.errors.append(syntax_error)

        for end_hook in parsing_did_end:
            await end_hook(error)
        return error is None

    async def _validate(self, context, listeners):
        validation_did_end = [await listener.validation_did_start(context) for listener in listeners]
        errors = validate(self.schema, context.document)
        context.errors.extend(errors)

        for end_hook in validation_did_end:
            await end_hook(errors or None)
        return not errors

    @staticmethod
    async def _resolve_operation(context, listeners):
        context.operation = get_operation_ast(context.document, context.operation_name)
        if context.operation is None:
            if context.operation_name:
                message = f"Unknown operation named '{context.operation_name}'."
            else:
                message = "Must provide operation name if query contains multiple operations."
            context.errors.append(GraphQLError(message))
            return False

        for listener in listeners:
            await listener.did_resolve_operation(context)
        return True

    async def _execute(self, context, listeners, root_value):
        execution_listeners = [await listener.execution_did_start(context) for listener in listeners]
        error = None
        try:
            result = execute(
                self.schema,
                context.document,
                root_value=root_value,
                context_value=context.context_value,
                variable_values=context.variables,
                operation_name=context.operation_name,
                middleware=[LifecycleFieldMiddleware(listener) for listener in execution_listeners],
            )
            if isawaitable(result):
                result = await result
        except Exception as execution_error:  # pylint: disable=broad-except
            logger.exception("Execution of %s failed", context.operation_name or "anonymous operation")
            error = execution_error
            context.errors.append(GraphQLError(str(execution_error), original_error=execution_error))
            result = ExecutionResult(data=None, errors=list(context.errors))

        for listener in execution_listeners:
            await listener.execution_did_end(error)

        if error is None and result.errors:
            context.errors.extend(result.errors)
        context.response = ExecutionResult(data=result.data, errors=list(context.errors) or None)
