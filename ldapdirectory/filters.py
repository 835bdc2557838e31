"""
Search filter algebra.

Filters are small immutable expression trees that render to RFC 4515 filter
strings.  Attribute names are checked against the RFC 4512 grammar and every
literal value is escaped when rendered, so callers can interpolate untrusted
input without opening themselves up to filter injection:

.. code-block:: python

    >>> from ldapdirectory.filters import Equality, Present
    >>> f = Equality("objectClass", "person") & ~Present("nsAccountLock")
    >>> str(f)
    '(&(objectClass=person)(!(nsAccountLock=*)))'
    >>> str(Equality("cn", "a*b(c)"))
    '(cn=a\\2ab\\28c\\29)'
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Union

from ldap.filter import escape_filter_chars
from ldap_filter import Filter as LDAPFilter
from ldap_filter.filter import LDAPBase
from ldap_filter.parser import ParseError

from .exceptions import FilterError

#: RFC 4512 ``oid`` (a descriptor or a numeric OID) followed by any number of
#: ``;option`` suffixes.
ATTRIBUTE_RE = re.compile(
    r"^(?:[A-Za-z][A-Za-z0-9-]*|(?:0|[1-9][0-9]*)(?:\.(?:0|[1-9][0-9]*))+)"
    r"(?:;[A-Za-z0-9-]+)*$"
)

FilterValue = Union[str, bytes, int]


def validate_attribute(name: str) -> str:
    """
    Make sure ``name`` is a syntactically valid attribute description.

    Args:
        name: the attribute name to check

    Raises:
        FilterError: ``name`` is not a descriptor or numeric OID

    Returns:
        ``name``, unchanged.

    """
    if not isinstance(name, str) or not ATTRIBUTE_RE.match(name):
        msg = f"Invalid attribute name in filter: {name!r}"
        raise FilterError(msg)
    return name


def escape_value(value: FilterValue) -> str:
    """
    Escape ``value`` for use as a literal inside a filter.

    ``str`` values have only the RFC 4515 special characters escaped, by
    :py:meth:`ldap_filter.Filter.escape`.  ``bytes`` values go through
    :py:func:`ldap.filter.escape_filter_chars`, which also escapes every
    byte outside ``0-9A-Za-z`` and the punctuation between them as ``\\xx``.
    ``int`` values are rendered in decimal.

    Args:
        value: the literal to escape

    Raises:
        FilterError: ``value`` is not a ``str``, ``bytes`` or ``int``

    Returns:
        The escaped text.

    """
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, bytes):
        # latin-1 maps each byte to the code point of the same number
        return escape_filter_chars(value.decode("latin-1"), escape_mode=1)
    if isinstance(value, str):
        return LDAPFilter.escape(value)
    msg = f"Unsupported filter value type: {type(value).__name__}"
    raise FilterError(msg)


class Filter:
    """
    Base class for all filter expressions.

    Subclasses implement :py:meth:`to_ldap_filter`, which builds the
    equivalent :py:mod:`ldap_filter` tree; :py:meth:`render` turns that tree
    into filter text.  Filters combine with ``&``, ``|`` and ``~``.
    """

    def to_ldap_filter(self) -> LDAPBase:
        raise NotImplementedError

    def render(self) -> str:
        return self.to_ldap_filter().to_string()

    def __str__(self) -> str:
        return self.render()

    def __and__(self, other: "Filter") -> "And":
        if not isinstance(other, Filter):
            return NotImplemented
        return And(self, other)

    def __or__(self, other: "Filter") -> "Or":
        if not isinstance(other, Filter):
            return NotImplemented
        return Or(self, other)

    def __invert__(self) -> "Not":
        return Not(self)


@dataclass(frozen=True, eq=True)
class Equality(Filter):
    """``(attribute=value)``"""

    attribute: str
    value: FilterValue

    def __post_init__(self) -> None:
        validate_attribute(self.attribute)
        # Validate the value type now rather than at render time
        escape_value(self.value)

    def to_ldap_filter(self) -> LDAPBase:
        attribute = LDAPFilter.attribute(self.attribute)
        if isinstance(self.value, str):
            return attribute.equal_to(self.value)
        return attribute.raw(escape_value(self.value))


@dataclass(frozen=True, eq=True)
class Present(Filter):
    """``(attribute=*)``"""

    attribute: str

    def __post_init__(self) -> None:
        validate_attribute(self.attribute)

    def to_ldap_filter(self) -> LDAPBase:
        return LDAPFilter.attribute(self.attribute).present()


@dataclass(frozen=True, eq=True)
class Substring(Filter):
    """
    ``(attribute=initial*any*...*final)``

    Every literal piece is escaped; only the separating ``*`` characters are
    emitted raw.  At least one of ``initial``, ``any`` or ``final`` must be
    given; use :py:class:`Present` to match any value.

    Args:
        attribute: the attribute to match
        initial: the value must start with this
        any: the value must contain these, in order
        final: the value must end with this

    Raises:
        FilterError: no substring pieces were given

    """

    attribute: str
    initial: FilterValue | None = None
    any: tuple[FilterValue, ...] = ()
    final: FilterValue | None = None

    def __post_init__(self) -> None:
        validate_attribute(self.attribute)
        object.__setattr__(self, "any", tuple(self.any))
        pieces = [p for p in (self.initial, *self.any, self.final) if p is not None]
        if not any(escape_value(p) for p in pieces):
            msg = f"Substring filter on {self.attribute} needs at least one non-empty piece"
            raise FilterError(msg)

    @classmethod
    def starts_with(cls, attribute: str, value: FilterValue) -> "Substring":
        return cls(attribute, initial=value)

    @classmethod
    def ends_with(cls, attribute: str, value: FilterValue) -> "Substring":
        return cls(attribute, final=value)

    @classmethod
    def contains(cls, attribute: str, value: FilterValue) -> "Substring":
        return cls(attribute, any=(value,))

    def to_ldap_filter(self) -> LDAPBase:
        # Pieces are escaped here, so hand ldap_filter the finished pattern
        initial = escape_value(self.initial) if self.initial is not None else ""
        final = escape_value(self.final) if self.final is not None else ""
        middle = "".join(f"{escape_value(piece)}*" for piece in self.any)
        return LDAPFilter.attribute(self.attribute).raw(f"{initial}*{middle}{final}")


class _Group(Filter):

    #: ``LDAPFilter.AND`` or ``LDAPFilter.OR``
    combine = staticmethod(LDAPFilter.AND)

    def __init__(self, *filters: Union["Filter", Iterable["Filter"]]) -> None:
        # Accept And(a, b, c) as well as And([a, b, c])
        if len(filters) == 1 and not isinstance(filters[0], Filter):
            filters = tuple(filters[0])  # type: ignore[arg-type]
        if not filters:
            msg = f"{type(self).__name__} needs at least one filter"
            raise FilterError(msg)
        for f in filters:
            if not isinstance(f, Filter):
                msg = f"{type(self).__name__} members must be filters, got {f!r}"
                raise FilterError(msg)
        self.filters: tuple[Filter, ...] = tuple(filters)  # type: ignore[arg-type]

    def to_ldap_filter(self) -> LDAPBase:
        return self.combine([f.to_ldap_filter() for f in self.filters])

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other) and self.filters == other.filters  # type: ignore[attr-defined]

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.filters))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({', '.join(repr(f) for f in self.filters)})"


class And(_Group):
    """``(&(...)(...))``; members render in the order given."""

    combine = staticmethod(LDAPFilter.AND)


class Or(_Group):
    """``(|(...)(...))``; members render in the order given."""

    combine = staticmethod(LDAPFilter.OR)


class Not(Filter):
    """``(!(...))``"""

    def __init__(self, filter: Filter) -> None:  # noqa: A002
        if not isinstance(filter, Filter):
            msg = f"Not needs a filter, got {filter!r}"
            raise FilterError(msg)
        self.filter = filter

    def to_ldap_filter(self) -> LDAPBase:
        return LDAPFilter.NOT(self.filter.to_ldap_filter())

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Not) and self.filter == other.filter

    def __hash__(self) -> int:
        return hash(("Not", self.filter))

    def __repr__(self) -> str:
        return f"Not({self.filter!r})"


class _Verbatim(LDAPBase):
    """Filter text dropped into an ``ldap_filter`` tree as is."""

    def __init__(self, text: str) -> None:
        self.text = text

    def to_string(self, indent=False, indt_char=" ", level=0) -> str:
        return self.text


class Raw(Filter):
    """
    A pre-rendered filter string, for filters that come from configuration.

    The text is only accepted if it parses as a filter; it is otherwise passed
    through untouched, so it must not contain unescaped user input.

    Args:
        text: the filter string

    Raises:
        FilterError: ``text`` does not parse

    """

    def __init__(self, text: str) -> None:
        text = text.strip()
        if not text.startswith("("):
            text = f"({text})"
        try:
            LDAPFilter.parse(text)
        except ParseError as e:
            msg = f"Invalid filter string {text!r}: {e}"
            raise FilterError(msg) from e
        self.text = text

    def to_ldap_filter(self) -> LDAPBase:
        return _Verbatim(self.text)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Raw) and self.text == other.text

    def __hash__(self) -> int:
        return hash(("Raw", self.text))

    def __repr__(self) -> str:
        return f"Raw({self.text!r})"


def compile_filter(value: Filter | str) -> Filter:
    """
    Normalize ``value`` into a :py:class:`Filter`.

    Strings are wrapped in :py:class:`Raw`, so they are validated but not
    escaped.

    Raises:
        FilterError: ``value`` is neither a filter nor a valid filter string

    """
    if isinstance(value, Filter):
        return value
    if isinstance(value, str):
        return Raw(value)
    msg = f"Cannot build a filter from {value!r}"
    raise FilterError(msg)
