"""
Validation of store configurations against their dataclass schemas.
"""

from dataclasses import MISSING, fields
from types import UnionType
from typing import Any, Literal, Union, get_args, get_origin, get_type_hints

from ratewindow.exceptions import ConfigValidationError
from ratewindow.schemas import ENGINE_SCHEMAS


def _get_type_name(type_hint: Any) -> str:
    """Get a human-readable name for a type hint."""
    if get_origin(type_hint) is None and hasattr(type_hint, "__name__"):
        return type_hint.__name__
    return str(type_hint).replace("typing.", "")


def _allowed_types(type_hint: Any) -> tuple[tuple[type, ...], tuple[Any, ...] | None]:
    """Return (accepted types, literal values or None) for a resolved type hint."""
    origin = get_origin(type_hint)

    if origin is Literal:
        return (), get_args(type_hint)

    if origin in (Union, UnionType):
        types: list[type] = []
        literal_values = None
        for arg in get_args(type_hint):
            if get_origin(arg) is Literal:
                literal_values = get_args(arg)
            elif isinstance(arg, type):
                types.append(arg)
        return tuple(types), literal_values

    return (type_hint,), None


def _coerce_numeric(value: Any, type_hint: Any) -> Any:
    """Convert a string to int/float when the field only accepts numbers.

    Env var expansion always yields strings, so ``max_retry = "${RETRIES:-3}"``
    arrives here as "3". Strings for fields that accept str are kept as-is.
    """
    if not isinstance(value, str):
        return value

    types, _ = _allowed_types(type_hint)
    if str in types:
        return value

    text = value.strip()
    try:
        if int in types:
            return int(text)
        if float in types:
            return float(text)
    except ValueError:
        # Not a number: _validate_type reports the wrong type
        return value
    return value


def _validate_type(value: Any, type_hint: Any, field_name: str) -> None:
    """Validate that a value matches a resolved field type hint."""
    types, literal_values = _allowed_types(type_hint)

    if literal_values is not None and value in literal_values:
        return

    # bool is an int subclass; "retry = true" must not pass as a number
    if isinstance(value, bool) and bool not in types:
        matches = False
    else:
        matches = isinstance(value, types) or (float in types and isinstance(value, int))

    if matches:
        return

    if value is None:
        raise ConfigValidationError(
            f"Field '{field_name}' cannot be None",
            field=field_name,
            expected=_get_type_name(type_hint),
            received="None",
        )

    if literal_values is not None and not types:
        raise ConfigValidationError(
            f"Field '{field_name}' must be one of {literal_values}",
            field=field_name,
            expected=f"Literal{literal_values}",
            received=repr(value),
        )

    raise ConfigValidationError(
        f"Field '{field_name}' has incorrect type",
        field=field_name,
        expected=_get_type_name(type_hint),
        received=type(value).__name__,
    )


def validate_store_config(engine: str, params: dict[str, Any]) -> Any:
    """Validate store configuration parameters and return a config dataclass.

    Numeric strings (typically produced by env var expansion) are converted
    for int and float fields before type checking.

    Args:
        engine: Engine name (e.g. "redis")
        params: Configuration parameters, without the "engine" key

    Returns:
        Config dataclass instance for the engine

    Raises:
        ConfigValidationError: If the engine is unknown, a required field is
            missing, a field is unknown or a value has the wrong type
    """
    if engine not in ENGINE_SCHEMAS:
        available = ", ".join(ENGINE_SCHEMAS.keys())
        raise ConfigValidationError(
            f"Unknown engine '{engine}'. Available engines: {available}",
            field="engine",
            expected=available,
            received=engine,
        )

    config_class = ENGINE_SCHEMAS[engine]
    type_hints = get_type_hints(config_class)
    config_fields = {f.name: f for f in fields(config_class) if f.name != "engine"}

    for field_name, field_obj in config_fields.items():
        has_default = field_obj.default is not MISSING or field_obj.default_factory is not MISSING
        if not has_default and field_name not in params:
            raise ConfigValidationError(
                f"Missing required field '{field_name}' for engine '{engine}'",
                field=field_name,
                expected="required",
                received="missing",
            )

    values: dict[str, Any] = {}
    for field_name, value in params.items():
        if field_name not in config_fields:
            raise ConfigValidationError(
                f"Unknown field '{field_name}' for engine '{engine}'",
                field=field_name,
                expected=", ".join(config_fields),
                received=field_name,
            )
        type_hint = type_hints[field_name]
        value = _coerce_numeric(value, type_hint)
        _validate_type(value, type_hint, field_name)
        values[field_name] = value

    try:
        return config_class(engine=engine, **values)
    except (TypeError, ValueError) as e:
        raise ConfigValidationError(
            f"Failed to create config for engine '{engine}': {e}",
            field="config",
            expected="valid parameters",
            received=str(params),
        ) from e
