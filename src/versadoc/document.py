"""Payload schemas and the immutable Document wrapper."""

from __future__ import annotations

import json
from typing import Any, Generic, Mapping, TypeVar

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from versadoc.errors import SchemaViolationError


class DocumentData(BaseModel):
    """Base schema shared by every payload version of every document type.

    Subclass once per schema version. Field names are snake_case in Python;
    the shared envelope keys keep their camelCase spelling on the wire.
    """

    model_config = ConfigDict(strict=True, extra="forbid", frozen=True, populate_by_name=True)

    version: int
    type_name: str = Field(alias="typeName")
    public_read: bool | None = Field(default=None, alias="publicRead")
    public_update: bool | None = Field(default=None, alias="publicUpdate")


D = TypeVar("D", bound=DocumentData)

_ANY_JSON = TypeAdapter(Any)

ACCESS_FLAGS = ("public_read", "public_update")


def format_validation_errors(exc: ValidationError) -> list[str]:
    """Flatten a pydantic ValidationError into ``"field.path: message"`` strings."""
    out = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "<root>"
        out.append(f"{loc}: {err['msg']}")
    return out


def validate_payload(
    model: type[D],
    payload: Mapping[str, Any],
    *,
    type_name: str,
    version: int | None,
) -> D:
    """Validate a wire payload against ``model`` as JSON.

    Validation goes through JSON so strict mode behaves the same for payloads
    read from storage and payloads built in memory.
    """
    try:
        raw = _ANY_JSON.dump_json(dict(payload))
    except (TypeError, ValueError) as e:
        raise SchemaViolationError(type_name, version, [f"not JSON serializable: {e}"]) from e
    try:
        return model.model_validate_json(raw)
    except ValidationError as e:
        raise SchemaViolationError(type_name, version, format_validation_errors(e)) from e


def dump_payload(data: BaseModel) -> dict[str, Any]:
    """JSON-ready wire payload with every schema field, defaults included.

    The access flags are the exception: they are only written once set, so an
    absent flag stays absent.
    """
    unset = {name for name in ACCESS_FLAGS if name not in data.model_fields_set}
    return data.model_dump(mode="json", by_alias=True, exclude=unset)


def wire_key(model: type[BaseModel], name: str) -> str:
    info = model.model_fields.get(name)
    if info is not None and info.alias:
        return info.alias
    return name


class Document(Generic[D]):
    """One payload at the current schema version.

    Documents never change in place: ``evolve`` returns a new Document.
    """

    __slots__ = ("_data",)

    def __init__(self, data: D) -> None:
        if not isinstance(data, DocumentData):
            raise TypeError(f"Document wraps DocumentData, got {type(data).__name__}")
        object.__setattr__(self, "_data", data)

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("Document is immutable; use evolve() to derive a new one")

    @property
    def data(self) -> D:
        return self._data

    @property
    def version(self) -> int:
        return self._data.version

    @property
    def type_name(self) -> str:
        return self._data.type_name

    @property
    def public_read(self) -> bool:
        return self._data.public_read is True

    @property
    def public_update(self) -> bool:
        return self._data.public_update is True

    def to_payload(self) -> dict[str, Any]:
        return dump_payload(self._data)

    def evolve(self, **changes: Any) -> Document[D]:
        """Return a new Document with ``changes`` applied and re-validated."""
        model = type(self._data)
        unknown = [name for name in changes if name not in model.model_fields]
        if unknown:
            raise SchemaViolationError(
                self.type_name, self.version, [f"{name}: unknown field" for name in unknown]
            )
        payload = self.to_payload()
        for name, value in changes.items():
            payload[wire_key(model, name)] = value
        new = validate_payload(model, payload, type_name=self.type_name, version=self.version)
        return type(self)(new)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Document):
            return NotImplemented
        return type(self._data) is type(other._data) and self.to_payload() == other.to_payload()

    def __hash__(self) -> int:
        return hash((type(self._data), json.dumps(self.to_payload(), sort_keys=True)))

    def __repr__(self) -> str:
        return f"Document({self.type_name!r}, v{self.version}, {self.to_payload()!r})"
