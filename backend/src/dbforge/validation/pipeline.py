"""Field pipeline for dbforge.

Turns an entity schema into the behavior applied at each lifecycle point:

1. create: discard readonly input, apply defaults and onCreate producers,
   check required fields, then trim, set, validate and coerce
2. update: reject changes to immutable fields, run onUpdate producers, and
   process only the fields present in the change set
3. replace: whole-entity write carrying readonly, immutable and
   permission-gated values over
4. remove: produce deletion-marker values from onRemove producers
5. read: get transforms, visibility and projection, secure-id encoding

All stages are synchronous and perform no I/O. Errors are collected per
field and raised together once the whole entity has been examined.
"""

import logging
from typing import Any

from dbforge.auth.permissions import can_read_field, can_write_field
from dbforge.core.types import kind_of
from dbforge.errors import (
    ImmutableFieldError,
    InvalidIdentifierError,
    PermissionDeniedError,
    SchemaError,
    TypeMismatchError,
    ValidationError,
)
from dbforge.hooks.types import FieldHookContext
from dbforge.metadata.loader import EntitySchema, FieldDescriptor, Hidden
from dbforge.persistence.identifiers import SecureIdCodec
from dbforge.validation.types import FieldError, Operation, PipelineContext

logger = logging.getLogger(__name__)

TYPE_MISMATCH = "TYPE_MISMATCH"
REQUIRED = "REQUIRED"
INVALID = "INVALID"


def raise_for_errors(errors: list[FieldError]) -> None:
    """Raise the aggregated error for a non-empty error list."""
    if not errors:
        return
    if all(e.code == TYPE_MISMATCH for e in errors):
        raise TypeMismatchError(errors)
    raise ValidationError(errors)


class FieldPipeline:
    """Applies an entity schema's field declarations to records."""

    def __init__(self, schema: EntitySchema, id_codec: SecureIdCodec | None = None):
        if schema.secure_fields and id_codec is None:
            names = ", ".join(fd.name for fd in schema.secure_fields)
            raise SchemaError(
                f"Entity '{schema.name}' has secure fields ({names}) but no id codec"
            )
        self.schema = schema
        self.id_codec = id_codec

    def process(self, entity: dict[str, Any] | None, context: PipelineContext) -> dict[str, Any]:
        """Dispatch on the context's operation."""
        if context.operation == Operation.CREATE:
            return self.create(entity or {}, context)
        if context.operation == Operation.UPDATE:
            return self.update(entity or {}, context)
        if context.operation == Operation.REPLACE:
            return self.replace(entity or {}, context)
        if context.operation == Operation.REMOVE:
            return self.remove(context)
        return self.read(entity or {}, context)

    # =========================================================================
    # Write stages
    # =========================================================================

    def create(self, entity: dict[str, Any], context: PipelineContext) -> dict[str, Any]:
        result: dict[str, Any] = {}
        errors: list[FieldError] = []

        for fd in self.schema.stored_fields:
            present = fd.name in entity and not fd.readonly
            value = entity.get(fd.name) if present else None
            if value is not None:
                self._check_write_permission(fd, context)

            hook_ctx = self._hook_ctx(fd, value, entity, context)
            if value is None and fd.default is not None:
                value = fd.produce(fd.default, hook_ctx)
            if fd.on_create is not None:
                hook_ctx.value = value
                value = fd.produce(fd.on_create, hook_ctx)

            if value is None:
                if fd.required:
                    errors.append(FieldError(fd.name, "is required", REQUIRED))
                continue

            value, error = self._write_value(fd, value, entity, context)
            if error:
                errors.append(error)
                continue
            result[fd.name] = value

        raise_for_errors(errors)
        return result

    def update(self, changes: dict[str, Any], context: PipelineContext) -> dict[str, Any]:
        existing = context.existing or {}
        merged = {**existing, **changes}
        result: dict[str, Any] = {}
        errors: list[FieldError] = []

        for fd in self.schema.stored_fields:
            present = fd.name in changes
            value = changes.get(fd.name)

            if present and self._is_locked(fd, existing):
                if not self._same_value(fd, value, existing.get(fd.name)):
                    raise ImmutableFieldError(fd.name)
                present = False
                value = None
            elif present and not can_write_field(fd, context.user_context):
                # clearing counts as a write; echoing the stored value does not
                if not self._same_value(fd, value, existing.get(fd.name)):
                    raise PermissionDeniedError(fd.name, fd.permission)
                present = False
                value = None

            if fd.on_update is not None:
                value = fd.produce(fd.on_update, self._hook_ctx(fd, value, merged, context))
                present = True

            if not present:
                continue
            if value is None:
                if fd.required:
                    errors.append(FieldError(fd.name, "is required", REQUIRED))
                else:
                    result[fd.name] = None
                continue

            value, error = self._write_value(fd, value, merged, context)
            if error:
                errors.append(error)
                continue
            result[fd.name] = value

        raise_for_errors(errors)
        return result

    def replace(self, entity: dict[str, Any], context: PipelineContext) -> dict[str, Any]:
        existing = context.existing or {}
        result: dict[str, Any] = {}
        errors: list[FieldError] = []

        for fd in self.schema.stored_fields:
            present = fd.name in entity
            value = entity.get(fd.name)

            locked = self._is_locked(fd, existing)
            guarded = not can_write_field(fd, context.user_context)
            if locked or guarded:
                if present and not fd.readonly and not self._same_value(fd, value, existing.get(fd.name)):
                    if locked:
                        raise ImmutableFieldError(fd.name)
                    raise PermissionDeniedError(fd.name, fd.permission)
                value = existing.get(fd.name)
                if fd.on_update is None:
                    if value is not None:
                        result[fd.name] = value
                    continue

            hook_ctx = self._hook_ctx(fd, value, entity, context)
            if value is None and fd.default is not None:
                value = fd.produce(fd.default, hook_ctx)
            if fd.on_update is not None:
                hook_ctx.value = value
                value = fd.produce(fd.on_update, hook_ctx)

            if value is None:
                if fd.required:
                    errors.append(FieldError(fd.name, "is required", REQUIRED))
                else:
                    result[fd.name] = None
                continue

            value, error = self._write_value(fd, value, entity, context)
            if error:
                errors.append(error)
                continue
            result[fd.name] = value

        raise_for_errors(errors)
        return result

    def remove(self, context: PipelineContext) -> dict[str, Any]:
        """Deletion-marker values. Empty when the entity is hard-deleted."""
        existing = context.existing or {}
        result: dict[str, Any] = {}
        errors: list[FieldError] = []
        for fd in self.schema.soft_delete_fields:
            value = fd.produce(fd.on_remove, self._hook_ctx(fd, existing.get(fd.name), existing, context))
            if value is None:
                result[fd.name] = None
                continue
            value, error = self._write_value(fd, value, existing, context)
            if error:
                errors.append(error)
                continue
            result[fd.name] = value
        raise_for_errors(errors)
        return result

    # =========================================================================
    # Read stage
    # =========================================================================

    def is_visible(self, fd: FieldDescriptor, context: PipelineContext) -> bool:
        """Whether a field belongs in the output for this caller and request."""
        if fd.hidden == Hidden.ALWAYS:
            return False
        if not can_read_field(fd, context.user_context):
            return False
        requested = context.requested_fields
        if requested is not None:
            wanted = {name.split(".", 1)[0] for name in requested}
            if fd.name in wanted:
                return True
            return fd.primary_key and bool(wanted & {"id", "_id"})
        return fd.hidden != Hidden.BY_DEFAULT

    def read(self, entity: dict[str, Any], context: PipelineContext) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for fd in self.schema.fields:
            if not self.is_visible(fd, context):
                continue
            if fd.virtual:
                if fd.getter is None:
                    continue
            elif fd.name not in entity:
                continue

            value = fd.apply_get(self._hook_ctx(fd, entity.get(fd.name), entity, context))
            if fd.secure and value is not None:
                value = self.id_codec.encode(value)
            result[fd.name] = value
        return result

    # =========================================================================
    # Helpers
    # =========================================================================

    def _hook_ctx(
        self,
        fd: FieldDescriptor,
        value: Any,
        entity: dict[str, Any],
        context: PipelineContext,
    ) -> FieldHookContext:
        return FieldHookContext(
            value=value,
            entity=entity,
            field=fd.name,
            operation=context.operation,
            user_context=context.user_context,
        )

    def _check_write_permission(self, fd: FieldDescriptor, context: PipelineContext) -> None:
        if not can_write_field(fd, context.user_context):
            raise PermissionDeniedError(fd.name, fd.permission)

    def _is_locked(self, fd: FieldDescriptor, existing: dict[str, Any]) -> bool:
        """Primary keys and readonly fields never change; immutable fields are set-once."""
        if fd.primary_key or fd.readonly:
            return True
        return fd.immutable and existing.get(fd.name) is not None

    def decode_secure(self, fd: FieldDescriptor, value: Any) -> Any:
        if fd.secure and isinstance(value, str):
            return self.id_codec.decode(value)
        return value

    def _same_value(self, fd: FieldDescriptor, incoming: Any, stored: Any) -> bool:
        try:
            incoming = self.decode_secure(fd, incoming)
        except InvalidIdentifierError:
            return False
        if incoming == stored:
            return True
        if incoming is None or stored is None:
            return False
        try:
            return fd.field_type.coerce(incoming) == fd.field_type.coerce(stored)
        except (TypeError, ValueError):
            return False

    def _write_value(
        self,
        fd: FieldDescriptor,
        value: Any,
        entity: dict[str, Any],
        context: PipelineContext,
    ) -> tuple[Any, FieldError | None]:
        """Decode, trim, set, validate and coerce one value."""
        try:
            value = self.decode_secure(fd, value)
        except InvalidIdentifierError:
            return None, FieldError(fd.name, "is not a valid identifier", INVALID)

        if fd.trim and isinstance(value, str):
            value = value.strip()

        hook_ctx = self._hook_ctx(fd, value, entity, context)
        value = fd.apply_set(hook_ctx)
        hook_ctx.value = value

        reason = fd.check(hook_ctx)
        if reason is not None:
            return None, FieldError(fd.name, reason, INVALID)

        try:
            value = fd.field_type.coerce(value)
        except (TypeError, ValueError):
            return None, FieldError(
                fd.name,
                f"expected {fd.type.value}, received {kind_of(value)}",
                TYPE_MISMATCH,
                expected=fd.type.value,
                received=kind_of(value),
            )
        return value, None


def process_fields(
    entity: dict[str, Any] | None,
    schema: EntitySchema,
    context: PipelineContext,
    id_codec: SecureIdCodec | None = None,
) -> dict[str, Any]:
    """Run the field pipeline stage selected by ``context.operation``."""
    return FieldPipeline(schema, id_codec).process(entity, context)
