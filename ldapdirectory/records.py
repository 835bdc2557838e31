"""
Declarative typed records built from directory entries.

.. code-block:: python

    class Person(Record):
        uid = CharField(required=True)
        cn = CharField()
        uid_number = IntegerField(db_column="uidNumber")
        mail = CharListField()

    result = Person.from_entry(entry)
    person = result.unwrap()      # raises SchemaMismatchError on bad data
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, ClassVar, Generic, TypeVar

from django.core.exceptions import ValidationError

from .entries import DirectoryEntry
from .exceptions import SchemaMismatchError
from .fields import Field

R = TypeVar("R", bound="Record")


class RecordBase(type):
    """
    Collect the :py:class:`~ldapdirectory.fields.Field` attributes of a
    :py:class:`Record` subclass, including inherited ones, in declaration order.
    """

    def __new__(cls, name, bases, attrs, **kwargs):
        fields: dict[str, Field] = {}
        for base in reversed(bases):
            fields.update(getattr(base, "_fields", {}))
        declared = sorted(
            ((key, value) for key, value in attrs.items() if isinstance(value, Field)),
            key=lambda item: item[1].creation_counter,
        )
        new_attrs = {k: v for k, v in attrs.items() if not isinstance(v, Field)}
        for key, value in declared:
            value.set_name(key)
            fields[key] = value
        new_attrs["_fields"] = fields
        return super().__new__(cls, name, bases, new_attrs, **kwargs)


class Record(metaclass=RecordBase):
    """
    Base class for typed records.

    Instances have a ``dn`` plus one attribute per declared field.

    Keyword Args:
        dn: the DN of the entry
        **kwargs: values for the declared fields; missing ones get the field's
            default

    """

    _fields: ClassVar[dict[str, Field]]

    def __init__(self, dn: str = "", **kwargs: Any) -> None:
        self.dn = dn
        for name, f in self._fields.items():
            setattr(self, name, kwargs.pop(name) if name in kwargs else f.get_default())
        if kwargs:
            msg = f"{type(self).__name__} has no fields named {', '.join(sorted(kwargs))}"
            raise TypeError(msg)

    def __repr__(self) -> str:
        return f"<{type(self).__name__}: {self.dn}>"

    def __eq__(self, other: object) -> bool:
        if type(self) is not type(other):
            return NotImplemented
        return self.dn.lower() == other.dn.lower() and all(  # type: ignore[attr-defined]
            getattr(self, name) == getattr(other, name) for name in self._fields
        )

    __hash__ = None  # type: ignore[assignment]

    @classmethod
    def attributes(cls) -> list[str]:
        """The LDAP attributes to ask for when searching for this record type."""
        return [f.ldap_attribute for f in cls._fields.values()]

    @classmethod
    def from_entry(cls: type[R], entry: DirectoryEntry) -> "Materialized[R]":
        """
        Convert ``entry`` to a record.

        Conversion problems are returned in :py:attr:`Materialized.errors`
        rather than raised.
        """
        errors: dict[str, list[str]] = {}
        kwargs: dict[str, Any] = {}
        for name, f in cls._fields.items():
            try:
                kwargs[name] = f.clean(entry.get_values(f.ldap_attribute))
            except ValidationError as e:
                errors[f.ldap_attribute] = list(e.messages)
        if errors:
            return Materialized(entry.dn, None, errors)
        return Materialized(entry.dn, cls(dn=entry.dn, **kwargs))

    def to_attributes(self) -> dict[str, list[bytes]]:
        """
        Return our field values as an attribute dict suitable for adding the
        entry.  Fields with no value are left out.
        """
        attrs: dict[str, list[bytes]] = {}
        for name, f in self._fields.items():
            values = f.to_db_value(getattr(self, name))
            if values:
                attrs[f.ldap_attribute] = values
        return attrs


@dataclass
class Materialized(Generic[R]):
    """
    The outcome of converting one entry to a record.

    Attributes:
        dn: the DN of the entry
        record: the record, or ``None`` if there were errors
        errors: attribute name to the problems found with it

    """

    dn: str
    record: R | None
    errors: Mapping[str, list[str]] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    def unwrap(self) -> R:
        """
        Raises:
            SchemaMismatchError: the entry didn't fit the record type

        """
        if self.errors or self.record is None:
            raise SchemaMismatchError(self.dn, dict(self.errors))
        return self.record
