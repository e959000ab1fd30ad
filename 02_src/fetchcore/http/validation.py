"""Response schema validation."""

from collections.abc import Mapping
from typing import Any

from jsonschema import Draft202012Validator
from pydantic import TypeAdapter, ValidationError


class ResponseValidator:
    """Validates decoded JSON bodies against a declared schema.

    A mapping is treated as a JSON-Schema document (draft 2020-12). Anything
    else must be a type pydantic understands: a BaseModel subclass,
    ``list[Model]``, ``dict[str, int]``, a TypedDict and so on.
    """

    def __init__(self, schema: Any):
        self.schema = schema
        self._json_schema: Draft202012Validator | None = None
        self._adapter: TypeAdapter | None = None
        if isinstance(schema, Mapping):
            Draft202012Validator.check_schema(schema)
            self._json_schema = Draft202012Validator(schema)
        else:
            self._adapter = TypeAdapter(schema)

    def validate(self, data: Any) -> list[str]:
        """Return a list of error messages; empty when data is valid."""
        if self._json_schema is not None:
            return [
                f"{error.json_path} {error.message}"
                for error in self._json_schema.iter_errors(data)
            ]

        try:
            self._adapter.validate_python(data)
        except ValidationError as e:
            return [
                "/" + "/".join(str(part) for part in error["loc"]) + f" {error['msg']}"
                for error in e.errors()
            ]
        return []
