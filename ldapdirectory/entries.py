"""
The values that flow between sessions, cursors and callers.
"""

import enum
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field

from . import ldap
from .filters import Filter, compile_filter


class Scope(enum.IntEnum):
    """Search scopes, with the same numeric values ``python-ldap`` uses."""

    BASE = ldap.SCOPE_BASE
    ONELEVEL = ldap.SCOPE_ONELEVEL
    SUBTREE = ldap.SCOPE_SUBTREE


class DirectoryEntry(Mapping):
    """
    One entry returned by a search: its DN plus its attributes.

    Attribute lookup is case-insensitive, as it is in the directory.  Values
    are kept as ``bytes`` in the order the server sent them, with duplicates
    dropped.

    Args:
        dn: the DN of the entry
        attributes: a mapping of attribute name to list of values

    """

    def __init__(self, dn: str, attributes: Mapping[str, Iterable[bytes]]) -> None:
        self.dn = dn
        # lowercase name -> (name as the server spelled it, values)
        self._data: dict[str, tuple[str, tuple[bytes, ...]]] = {}
        for name, values in attributes.items():
            key = name.lower()
            existing = self._data[key][1] if key in self._data else ()
            encoded = (v.encode("utf-8") if isinstance(v, str) else v for v in values)
            # Drop repeats, keeping first-seen order
            merged = tuple(dict.fromkeys((*existing, *encoded)))
            self._data[key] = (self._data.get(key, (name,))[0], merged)

    @classmethod
    def from_ldap(cls, data: tuple[str, dict[str, list[bytes]]]) -> "DirectoryEntry":
        """Build an entry from one ``(dn, attrs)`` tuple from ``python-ldap``."""
        dn, attrs = data
        return cls(dn, attrs)

    def __getitem__(self, name: str) -> tuple[bytes, ...]:
        return self._data[name.lower()][1]

    def __iter__(self) -> Iterator[str]:
        return (name for name, _ in self._data.values())

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._data

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DirectoryEntry):
            return NotImplemented
        return self.dn.lower() == other.dn.lower() and dict(
            (k, v[1]) for k, v in self._data.items()
        ) == dict((k, v[1]) for k, v in other._data.items())

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"DirectoryEntry({self.dn!r}, attributes={sorted(self)!r})"

    def get_values(self, name: str) -> tuple[bytes, ...]:
        """Return all values of ``name``, or an empty tuple."""
        return self.get(name, ())

    def first(self, name: str) -> bytes | None:
        """Return the first value of ``name``, or ``None``."""
        values = self.get_values(name)
        return values[0] if values else None

    def text(self, name: str, encoding: str = "utf-8") -> list[str]:
        """Return all values of ``name`` decoded to ``str``."""
        return [value.decode(encoding) for value in self.get_values(name)]

    def first_text(self, name: str, encoding: str = "utf-8") -> str | None:
        value = self.first(name)
        return value.decode(encoding) if value is not None else None

    def as_dict(self) -> dict[str, list[bytes]]:
        """Return the attributes as a plain ``python-ldap`` style dict."""
        return {name: list(values) for name, values in self._data.values()}


@dataclass(frozen=True)
class SearchRequest:
    """
    Everything needed to run one search.

    Args:
        base: the DN to search from
        scope: how far below ``base`` to look
        filter: the filter; strings are validated and wrapped in
            :py:class:`~ldapdirectory.filters.Raw`

    Keyword Args:
        attributes: the attributes to return; ``None`` means all user
            attributes
        page_size: entries per page for paged searches; ``None`` uses the
            pool's configured page size
        sort: attribute names to ask the server to sort by; prefix a name
            with ``-`` to sort descending

    """

    base: str
    scope: Scope = Scope.SUBTREE
    filter: Filter | str = "(objectClass=*)"
    attributes: tuple[str, ...] | None = None
    page_size: int | None = None
    sort: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "filter", compile_filter(self.filter))
        object.__setattr__(self, "scope", Scope(self.scope))
        if self.attributes is not None:
            object.__setattr__(self, "attributes", tuple(self.attributes))
        object.__setattr__(self, "sort", tuple(self.sort or ()))
        if self.page_size is not None and self.page_size < 1:
            msg = f"page_size must be at least 1, got {self.page_size}"
            raise ValueError(msg)

    @property
    def filterstr(self) -> str:
        return self.filter.render()  # type: ignore[union-attr]

    @property
    def attrlist(self) -> list[str] | None:
        return list(self.attributes) if self.attributes is not None else None
