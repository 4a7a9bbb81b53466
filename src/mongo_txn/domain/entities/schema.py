"""Collection schema descriptors and the shard-key binder.

A ``DocumentSchema`` pairs the pydantic model that validates a
collection's business fields with the routing rule that every update or
delete selector for that collection must carry. Sharded deployments route
writes by shard key, so the coordinator never addresses a document by
``_id`` alone; it asks the schema to build the selector.

Example:
    >>> class Account(BaseModel):
    ...     balance: int = 0
    >>> schema = bind_shard_key(
    ...     DocumentSchema(Account),
    ...     fields={"region": (str, ...)},
    ...     rule=("region", "_id"),
    ...     initialize=lambda doc: doc.setdefault("region", "eu"),
    ... )
    >>> schema.build_selector({"_id": 1, "region": "eu", "balance": 3})
    {'region': 'eu', '_id': 1}
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Mapping, MutableMapping, Sequence

from pydantic import BaseModel, create_model

from mongo_txn.domain.value_objects import ID_FIELD, RESERVED_FIELDS

Initializer = Callable[[MutableMapping[str, Any]], None]


@dataclass(frozen=True)
class DocumentSchema:
    """Descriptor of a collection's document type.

    Attributes:
        model: pydantic model validating the business fields. Reserved
            fields (``_id``, the lock field, the new-document marker) are
            never passed to it.
        shard_key: Fields that must appear in every update/delete selector.
        initializers: Callables run on the raw fields before the first save,
            typically to derive a shard key from the document's own id.
    """

    model: type[BaseModel]
    shard_key: tuple[str, ...] = (ID_FIELD,)
    initializers: tuple[Initializer, ...] = field(default=())

    @property
    def name(self) -> str:
        return self.model.__name__

    @property
    def routing_fields(self) -> frozenset[str]:
        """Fields a read must always fetch, whatever projection the caller asked for."""
        return RESERVED_FIELDS | frozenset(self.shard_key)

    def initialize(self, fields: MutableMapping[str, Any]) -> None:
        """Run the initializers against raw document fields, in binding order."""
        for initializer in self.initializers:
            initializer(fields)

    def validate(self, fields: Mapping[str, Any]) -> dict[str, Any]:
        """Validate business fields and return them with defaults applied.

        Undeclared fields are kept as they are. Declared optional fields that
        the caller never set are not materialized as nulls.

        Raises:
            pydantic.ValidationError: If the fields do not satisfy the model.
        """
        business = {k: v for k, v in fields.items() if k not in RESERVED_FIELDS}
        validated = self.model.model_validate(business).model_dump()

        result = dict(business)
        for key, value in validated.items():
            if value is None and key not in business:
                continue
            result[key] = value
        return result

    def build_selector(self, fields: Mapping[str, Any]) -> dict[str, Any]:
        """Build the routing selector for a document.

        Raises:
            ValueError: If a shard-key field is missing from the document.
        """
        missing = [key for key in self.shard_key if key not in fields]
        if missing:
            raise ValueError(
                f"Document of {self.name} is missing shard key field(s) {missing}"
            )
        return {key: fields[key] for key in self.shard_key}


def bind_shard_key(
    schema: DocumentSchema,
    *,
    rule: Sequence[str] | Mapping[str, Any],
    fields: Mapping[str, Any] | None = None,
    initialize: Initializer | None = None,
) -> DocumentSchema:
    """Return a copy of ``schema`` bound to a shard key.

    Args:
        schema: The descriptor to augment. It is left untouched.
        rule: Fields every update/delete selector must include, in order.
            A mapping such as ``{"shard": 1, "_id": 1}`` is accepted; only its
            keys are used.
        fields: Extra pydantic field definitions for the shard key, in
            ``create_model`` form, e.g. ``{"shard": (int, ...)}``.
        initialize: Initializer deriving shard values on first save.

    Returns:
        The augmented descriptor.
    """
    rule_fields = tuple(rule.keys()) if isinstance(rule, Mapping) else tuple(rule)
    if not rule_fields:
        raise ValueError("A shard key rule needs at least one field")

    model = schema.model
    if fields:
        model = create_model(  # type: ignore[call-overload]
            f"{schema.model.__name__}Sharded",
            __base__=schema.model,
            **dict(fields),
        )

    initializers = schema.initializers
    if initialize is not None:
        initializers = (*initializers, initialize)

    return replace(schema, model=model, shard_key=rule_fields, initializers=initializers)
