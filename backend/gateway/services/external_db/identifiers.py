"""
Identifier quoting for statements built over unknown schemas.

Every table and column name that reaches SQL text goes through
quote_identifier; values always travel as bind parameters.
"""
from typing import Iterable

from gateway.core.errors import ValidationError

# PostgreSQL truncates identifiers beyond NAMEDATALEN - 1
MAX_IDENTIFIER_LENGTH = 63


def validate_identifier(name: str) -> str:
    if not isinstance(name, str) or not name:
        raise ValidationError("Identifier must be a non-empty string", {"identifier": name})
    if "\x00" in name:
        raise ValidationError("Identifier contains a NUL character", {"identifier": name})
    if len(name) > MAX_IDENTIFIER_LENGTH:
        raise ValidationError(
            f"Identifier longer than {MAX_IDENTIFIER_LENGTH} characters",
            {"identifier": name}
        )
    return name


def quote_identifier(name: str) -> str:
    """
    Quote an identifier, preserving case. Embedded double quotes are doubled.

    >>> quote_identifier('userName')
    '"userName"'
    """
    validate_identifier(name)
    return '"' + name.replace('"', '""') + '"'


def quote_identifiers(names: Iterable[str]) -> str:
    """Comma-separated quoted identifiers."""
    return ", ".join(quote_identifier(name) for name in names)
