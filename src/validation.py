"""
Schema Validation - JSON Schema validation of resource configuration.

Resource providers declare their configuration schema as a Draft 7 JSON
Schema; these helpers check the schema itself and validate configuration
against it.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from jsonschema import Draft7Validator, SchemaError

logger = logging.getLogger(__name__)


def validate_schema(schema: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Validate that a schema is a valid Draft 7 JSON Schema.

    Args:
        schema: The schema to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        Draft7Validator.check_schema(schema)
        return True, None
    except SchemaError as e:
        return False, f"Invalid schema: {e.message}"


def validate_config_against_schema(
    config: Dict[str, Any], schema: Dict[str, Any]
) -> Tuple[bool, Optional[str]]:
    """
    Validate a resource configuration against its schema.

    Args:
        config: The flat resource configuration to validate
        schema: The JSON Schema to validate against

    Returns:
        Tuple of (is_valid, error_message). All violations are reported,
        sorted by attribute path.
    """
    validator = Draft7Validator(schema, format_checker=Draft7Validator.FORMAT_CHECKER)
    errors = sorted(
        validator.iter_errors(config), key=lambda e: [str(p) for p in e.absolute_path]
    )

    if not errors:
        return True, None

    error_messages = []
    for error in errors:
        path = ".".join(str(p) for p in error.absolute_path) or "(root)"
        error_messages.append(f"{path}: {error.message}")

    logger.debug(f"Configuration failed validation: {error_messages}")
    return False, "; ".join(error_messages)
