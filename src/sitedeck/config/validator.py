"""Validation utilities for SiteDeck configuration."""

from pydantic import ValidationError as PydanticValidationError


def flatten_pydantic_errors(exc: PydanticValidationError) -> list[str]:
    """Flatten a Pydantic ValidationError into one message per field.

    Locations are dotted (``cloudfront.error_pages.0.error_code``) and value
    errors echo the offending input.
    """
    errors: list[str] = []

    for error in exc.errors():
        loc = error.get("loc", ())
        field_path = ".".join(str(item) for item in loc) if loc else "config"
        msg = error.get("msg", "Unknown error")

        if error.get("type") == "value_error":
            errors.append(f"{field_path}: {msg} (received: {error.get('input')!r})")
        elif error.get("type") == "extra_forbidden":
            errors.append(f"{field_path}: unknown field")
        else:
            errors.append(f"{field_path}: {msg}")

    return errors or ["Validation failed with unknown error"]


def first_error_field(exc: PydanticValidationError) -> str:
    """Dotted location of the first error, used as the ConfigError field."""
    for error in exc.errors():
        loc = error.get("loc", ())
        if loc:
            return ".".join(str(item) for item in loc)
    return "config"
