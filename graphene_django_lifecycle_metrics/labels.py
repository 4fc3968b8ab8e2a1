"""Utilities for deriving Prometheus label sets from GraphQL requests and fields."""

from graphene_django_lifecycle_metrics.context import FieldDescriptor, RequestContext

CONTEXT_LABELS = ("operationName", "operation", "app", "service")
FIELD_LABELS = ("fieldName", "parentType", "pathLength", "returnType")


def labels_from_context(context: RequestContext, service: str, app_header: str = "app") -> dict:
    """Build the request-level label set.

    Any value the context cannot provide is ``None`` rather than an empty
    string so that :func:`filter_labels` can drop it later.

    Args:
        context: A :class:`~graphene_django_lifecycle_metrics.context.RequestContext`.
        service: The logical service name embedded into every label set.
        app_header: HTTP header whose value becomes the ``app`` label.

    Returns:
        dict: ``operationName``, ``operation``, ``app`` and ``service`` labels.
    """
    return {
        "operationName": context.operation_name,
        "operation": context.operation_type,
        "app": context.get_header(app_header),
        "service": service,
    }


def count_field_ancestors(path):
    """Count how many path segments sit above a field, as a string.

    A root field (``path.prev is None``) has no ancestors. List indices are
    path segments in graphql-core, so ``devices[0].name`` has two ancestors.

    Args:
        path: A graphql-core ``Path`` or None.

    Returns:
        str: The decimal ancestor count.
    """
    counter = 0
    ancestor = path.prev if path is not None else None

    while ancestor is not None:
        ancestor = ancestor.prev
        counter += 1

    return str(counter)


def labels_from_field(info: FieldDescriptor) -> dict:
    """Build the field-level label set from a ``GraphQLResolveInfo``."""
    return {
        "fieldName": info.field_name,
        "parentType": info.parent_type.name if info.parent_type else None,
        "pathLength": count_field_ancestors(info.path),
        "returnType": str(info.return_type) if info.return_type is not None else None,
    }


def filter_labels(labels):
    """Drop labels whose value is absent.

    Falsy values that are present (``"false"``, ``""``, ``"0"``) are kept.

    Args:
        labels: Mapping of label name to value or None.

    Returns:
        dict: A new dict without the ``None`` entries.
    """
    return {key: value for key, value in labels.items() if value is not None}


def convert_ms_to_s(value):
    """Convert a millisecond timestamp or duration to seconds."""
    return value / 1000
