"""
Helpers for picking apart and building distinguished names.
"""

from functools import total_ordering

from ldap.dn import dn2str, escape_dn_chars, str2dn

from . import ldap

RDNPart = tuple[str, str, int]


@total_ordering
class DistinguishedName:
    """
    A parsed distinguished name.

    Attribute types compare case-insensitively, so
    ``uid=fred,ou=people,dc=example,dc=com`` and
    ``UID=fred,OU=people,DC=example,DC=com`` are equal.  Multi-valued RDNs
    (``cn=a+sn=b``) are kept together as one RDN.

    Args:
        rdns: the RDNs, leaf first, as returned by :py:func:`ldap.dn.str2dn`

    """

    def __init__(self, rdns: list[list[RDNPart]]) -> None:
        self.rdns: tuple[tuple[RDNPart, ...], ...] = tuple(
            tuple(rdn) for rdn in rdns
        )

    @classmethod
    def parse(cls, text: str) -> "DistinguishedName":
        """
        Parse a string DN.

        Raises:
            ValueError: ``text`` is not a valid DN

        """
        try:
            return cls(str2dn(text))
        except ldap.DECODING_ERROR as e:
            msg = f"Invalid distinguished name: {text!r}"
            raise ValueError(msg) from e

    def __str__(self) -> str:
        return dn2str([list(rdn) for rdn in self.rdns])

    def __repr__(self) -> str:
        return f"DistinguishedName({str(self)!r})"

    def __len__(self) -> int:
        return len(self.rdns)

    def _key(self) -> tuple:
        return tuple(
            tuple((attr.lower(), value.lower()) for attr, value, _ in rdn)
            for rdn in self.rdns
        )

    def __eq__(self, other: object) -> bool:
        if isinstance(other, str):
            try:
                other = DistinguishedName.parse(other)
            except ValueError:
                return False
        if not isinstance(other, DistinguishedName):
            return NotImplemented
        return self._key() == other._key()

    def __lt__(self, other: "DistinguishedName") -> bool:
        # Compare from the root down so siblings sort together
        return tuple(reversed(self._key())) < tuple(reversed(other._key()))

    def __hash__(self) -> int:
        return hash(self._key())

    def get(self, attr: str) -> str | None:
        """
        Return the value of the first (leftmost) RDN component of type ``attr``,
        or ``None`` if there is none.
        """
        attr = attr.lower()
        for rdn in self.rdns:
            for rdn_attr, value, _ in rdn:
                if rdn_attr.lower() == attr:
                    return value
        return None

    def starting_from(self, attr: str) -> "DistinguishedName | None":
        """
        Return the suffix of this DN that starts at the first RDN of type
        ``attr``, so ``starting_from("ou")`` of
        ``uid=fred,ou=people,dc=example,dc=com`` is
        ``ou=people,dc=example,dc=com``.
        """
        attr = attr.lower()
        for index, rdn in enumerate(self.rdns):
            if any(rdn_attr.lower() == attr for rdn_attr, _, _ in rdn):
                return DistinguishedName([list(r) for r in self.rdns[index:]])
        return None

    @property
    def rdn_type(self) -> str | None:
        if not self.rdns:
            return None
        return self.rdns[0][0][0]

    @property
    def rdn_value(self) -> str | None:
        if not self.rdns:
            return None
        return self.rdns[0][0][1]

    @property
    def parent(self) -> "DistinguishedName | None":
        if not self.rdns:
            return None
        return DistinguishedName([list(r) for r in self.rdns[1:]])

    def is_descendant_of(self, other: "DistinguishedName | str") -> bool:
        """
        Return ``True`` if this DN lies strictly below ``other`` in the tree.
        """
        if isinstance(other, str):
            other = DistinguishedName.parse(other)
        if len(other) >= len(self):
            return False
        return self._key()[len(self) - len(other):] == other._key()


def build_dn(rdn_attribute: str, value: str, base: str) -> str:
    """
    Build ``<rdn_attribute>=<value>,<base>``, escaping ``value``.

    Args:
        rdn_attribute: the RDN attribute type, e.g. ``uid``
        value: the unescaped RDN value
        base: the parent DN

    Returns:
        The new DN as a string.

    """
    return f"{rdn_attribute}={escape_dn_chars(value)},{base}"
