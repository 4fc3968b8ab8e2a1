"""Read-only views of host objects consumed by the lifecycle hooks."""

from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Protocol, Sequence

from django.utils.datastructures import CaseInsensitiveMapping
from graphql import DocumentNode, ExecutionResult, GraphQLError, OperationDefinitionNode


class RequestContext(Protocol):
    """What the hooks read from a request: operation metadata, headers and errors."""

    @property
    def operation_name(self) -> Optional[str]: ...

    @property
    def operation_type(self) -> Optional[str]: ...

    @property
    def errors(self) -> Sequence[GraphQLError]: ...

    def get_header(self, name: str) -> Optional[str]: ...


class FieldDescriptor(Protocol):
    """The subset of ``GraphQLResolveInfo`` used to label a field resolution."""

    field_name: str
    parent_type: Any
    path: Any
    return_type: Any


@dataclass
class GraphQLRequestContext:  # pylint: disable=too-many-instance-attributes
    """Mutable per-request state owned by :class:`~.executor.GraphQLServer`.

    The executor fills in ``document``, ``operation``, ``errors`` and
    ``response`` as the request moves through its phases; the hooks only read.
    """

    query: str
    variables: Optional[Mapping[str, Any]] = None
    operation_name: Optional[str] = None
    headers: Mapping[str, str] = field(default_factory=dict)
    context_value: Any = None
    document: Optional[DocumentNode] = None
    operation: Optional[OperationDefinitionNode] = None
    errors: List[GraphQLError] = field(default_factory=list)
    response: Optional[ExecutionResult] = None

    def __post_init__(self):
        self.headers = CaseInsensitiveMapping(self.headers or {})

    @property
    def operation_type(self):
        """The resolved operation kind (``query``, ``mutation``...), or None before resolution."""
        if self.operation is None:
            return None
        return self.operation.operation.value

    def get_header(self, name):
        return self.headers.get(name)
