"""JSON-schema validation for recorded operations."""

from __future__ import annotations

import json
from functools import lru_cache
from importlib import resources
from typing import Any, Iterator, List, Mapping, Tuple

from jsonschema import Draft202012Validator

from .operations import Operation

_SCHEMA_RESOURCE = "operation.schema.json"
_SCHEMA_PACKAGE = "idlesync.resources"


class OperationValidationError(ValueError):
    """Raised when an operation payload is malformed."""

    def __init__(self, operation_id: str, problems: List[Tuple[str, str]]) -> None:
        self.operation_id = operation_id
        self.problems = problems
        detail = "; ".join(f"{path or '<root>'}: {message}" for path, message in problems)
        super().__init__(f"operation {operation_id} invalid: {detail}")


@lru_cache(maxsize=1)
def _load_schema() -> dict[str, Any]:
    resource = resources.files(_SCHEMA_PACKAGE) / _SCHEMA_RESOURCE
    with resource.open("r", encoding="utf-8") as handle:
        return json.load(handle)


@lru_cache(maxsize=1)
def _validator() -> Draft202012Validator:
    return Draft202012Validator(_load_schema())


def iter_operation_errors(payload: Mapping[str, Any]) -> Iterator[Tuple[str, str]]:
    """Yield (path, message) pairs for schema issues in a serialised operation."""
    for error in _validator().iter_errors(dict(payload)):
        path = ".".join(str(item) for item in error.absolute_path)
        yield path, error.message


def validate_operation(operation: Operation) -> None:
    problems = list(iter_operation_errors(operation.to_dict()))
    if problems:
        raise OperationValidationError(operation.id, problems)


__all__ = ["OperationValidationError", "iter_operation_errors", "validate_operation"]
