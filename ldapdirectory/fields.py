"""
Typed fields for :py:class:`~ldapdirectory.records.Record` classes.

Each field converts between the ``list[bytes]`` the directory gives us for an
attribute and a Python value.  Bad data raises
:py:class:`django.core.exceptions.ValidationError`, which
:py:meth:`Record.from_entry <ldapdirectory.records.Record.from_entry>` collects
instead of letting it escape.
"""

import logging
from typing import Any

from django.core import exceptions

logger = logging.getLogger(__name__)


class Field:
    """
    Base class for record fields.

    Keyword Args:
        db_column: the LDAP attribute name, if it differs from the Python
            attribute name
        required: the entry must have at least one value for this attribute
        default: the value to use when the attribute is missing
        error_messages: overrides for :py:attr:`default_error_messages`

    """

    #: Used to order fields in the order they were declared
    creation_counter: int = 0

    default_error_messages: dict[str, str] = {  # noqa: RUF012
        "required": "This field is required.",
    }

    def __init__(
        self,
        db_column: str | None = None,
        required: bool = False,
        default: Any = None,
        error_messages: dict[str, str] | None = None,
    ) -> None:
        self.name: str | None = None
        self.db_column = db_column
        self.required = required
        self.default = default
        self.creation_counter = Field.creation_counter
        Field.creation_counter += 1
        messages: dict[str, str] = {}
        for c in reversed(self.__class__.__mro__):
            messages.update(getattr(c, "default_error_messages", {}))
        messages.update(error_messages or {})
        self.error_messages = messages

    def __repr__(self) -> str:
        path = f"{self.__class__.__module__}.{self.__class__.__qualname__}"
        if self.name is not None:
            return f"<{path}: {self.name}>"
        return f"<{path}>"

    def set_name(self, name: str) -> None:
        self.name = name
        if not self.db_column:
            self.db_column = name

    @property
    def ldap_attribute(self) -> str:
        return self.db_column or self.name  # type: ignore[return-value]

    def get_default(self) -> Any:
        if callable(self.default):
            return self.default()
        return self.default

    def decode(self, value: list[bytes]) -> list[str]:
        try:
            return [v.decode("utf-8") for v in value]
        except UnicodeDecodeError as e:
            raise exceptions.ValidationError(
                "'%(value)r' is not valid UTF-8.", code="invalid", params={"value": e.object}
            ) from e

    def clean(self, value: list[bytes] | tuple[bytes, ...] | None) -> Any:
        """
        Convert the attribute's values, applying ``required`` and ``default``.

        Raises:
            ValidationError: the values don't fit this field

        """
        if not value:
            if self.required:
                raise exceptions.ValidationError(
                    self.error_messages["required"], code="required"
                )
            return self.get_default()
        return self.from_db_value(list(value))

    def from_db_value(self, value: list[bytes]) -> Any:
        return self.decode(value)

    def to_db_value(self, value: Any) -> list[bytes]:
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return [str(v).encode("utf-8") for v in value]
        return [str(value).encode("utf-8")]


class CharField(Field):
    """A single string value.  Only the first value is used."""

    def from_db_value(self, value: list[bytes]) -> str | None:
        db_value = self.decode(value)
        if len(db_value) > 1:
            logger.debug(
                "ldapdirectory.fields.multi-valued attribute=%s values=%d using=first",
                self.ldap_attribute,
                len(db_value),
            )
        return db_value[0]


class IntegerField(Field):
    default_error_messages: dict[str, str] = {  # noqa: RUF012
        "invalid": "'%(value)s' value must be an integer.",
    }

    def from_db_value(self, value: list[bytes]) -> int | None:
        db_value = self.decode(value)
        try:
            return int(db_value[0])
        except (TypeError, ValueError) as e:
            raise exceptions.ValidationError(
                self.error_messages["invalid"],
                code="invalid",
                params={"value": db_value[0]},
            ) from e


class BooleanField(Field):
    """
    A boolean stored as the strings ``TRUE`` and ``FALSE``, the LDAP Boolean
    syntax.  Either case is accepted when reading.
    """

    default_error_messages: dict[str, str] = {  # noqa: RUF012
        "invalid": "'%(value)s' value must be either TRUE or FALSE.",
    }

    LDAP_TRUE: str = "TRUE"
    LDAP_FALSE: str = "FALSE"

    def from_db_value(self, value: list[bytes]) -> bool:
        db_value = self.decode(value)[0]
        if db_value.upper() == self.LDAP_TRUE:
            return True
        if db_value.upper() == self.LDAP_FALSE:
            return False
        raise exceptions.ValidationError(
            self.error_messages["invalid"],
            code="invalid",
            params={"value": db_value},
        )

    def to_db_value(self, value: bool | None) -> list[bytes]:
        if value is None:
            return []
        return [(self.LDAP_TRUE if value else self.LDAP_FALSE).encode("utf-8")]


class CharListField(Field):
    """Every value of a multi-valued attribute, as a list of strings."""

    def get_default(self) -> list[str]:
        if self.default is None:
            return []
        return super().get_default()

    def from_db_value(self, value: list[bytes]) -> list[str]:
        return self.decode(value)


class BinaryField(Field):
    """
    The first value, as raw ``bytes``.  Use this for photos, certificates and
    the like.
    """

    def from_db_value(self, value: list[bytes]) -> bytes:
        return value[0]

    def to_db_value(self, value: bytes | bytearray | None) -> list[bytes]:
        if value is None:
            return []
        return [bytes(value)]
