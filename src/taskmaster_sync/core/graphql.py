"""GraphQL document building for monday.com mutations.

A ``Mutation`` renders itself as an aliased field whose variables carry
an ``_{index}`` suffix, so several mutations can share one document
without colliding.  Single calls use index 0.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Mutation:
    """One GraphQL mutation field.

    Attributes:
        operation: Mutation field name, e.g. ``create_item``.
        arguments: Argument name -> (GraphQL type, value).
        selection: Selection set for the result.
    """

    operation: str
    arguments: Mapping[str, tuple[str, Any]] = field(default_factory=dict)
    selection: str = "id"

    def alias(self, index: int) -> str:
        return f"op_{index}"

    def render(self, index: int) -> tuple[str, list[str], dict[str, Any]]:
        """Render this mutation as operation number *index*.

        Returns:
            Tuple of (aliased field text, variable declarations, variables).
        """
        declarations: list[str] = []
        args: list[str] = []
        variables: dict[str, Any] = {}
        for name, (gql_type, value) in self.arguments.items():
            var = f"{name}_{index}"
            declarations.append(f"${var}: {gql_type}")
            args.append(f"{name}: ${var}")
            variables[var] = value
        arg_text = f"({', '.join(args)})" if args else ""
        body = f"{self.alias(index)}: {self.operation}{arg_text} {{ {self.selection} }}"
        return body, declarations, variables


def build_document(
    mutations: list[Mutation], name: str = "Batch"
) -> tuple[str, dict[str, Any]]:
    """Combine *mutations* into one document plus its variables."""
    bodies: list[str] = []
    declarations: list[str] = []
    variables: dict[str, Any] = {}
    for index, mutation in enumerate(mutations):
        body, decls, vars_ = mutation.render(index)
        bodies.append(body)
        declarations.extend(decls)
        variables.update(vars_)
    header = f"mutation {name}"
    if declarations:
        header += f"({', '.join(declarations)})"
    query = header + " {\n  " + "\n  ".join(bodies) + "\n}"
    return query, variables
