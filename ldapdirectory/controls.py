"""
Request controls used by searches.

``python-ldap`` ships the Simple Paged Results control (RFC 2696) but not a
request control for server-side sorting (RFC 2891), so we build that one here
with ``pyasn1``.
"""

from typing import ClassVar

from ldap.controls import LDAPControl, SimplePagedResultsControl
from pyasn1.codec.ber import encoder  # type: ignore[import]
from pyasn1.type import namedtype, tag, univ  # type: ignore[import]

#: OID of the server-side sort request control.  389 Directory Server, OpenLDAP
#: and Active Directory all use it.
SORT_CONTROL_OID = "1.2.840.113556.1.4.473"


class SortKey(univ.Sequence):
    """
    ``SortKey ::= SEQUENCE { attributeType, orderingRule [0] OPTIONAL,
    reverseOrder [1] BOOLEAN DEFAULT FALSE }``
    """

    componentType: ClassVar[namedtype.NamedTypes] = namedtype.NamedTypes(  # noqa: N815
        namedtype.NamedType("attributeType", univ.OctetString()),
        namedtype.OptionalNamedType(
            "orderingRule",
            univ.OctetString().subtype(
                implicitTag=tag.Tag(tag.tagClassContext, tag.tagFormatSimple, 0)
            ),
        ),
        namedtype.DefaultedNamedType(
            "reverseOrder",
            univ.Boolean(False).subtype(  # noqa: FBT003
                implicitTag=tag.Tag(tag.tagClassContext, tag.tagFormatSimple, 1)
            ),
        ),
    )


class SortKeyList(univ.SequenceOf):

    componentType: ClassVar[SortKey] = SortKey()  # noqa: N815


def encode_sort_keys(sort_fields: list[str] | tuple[str, ...]) -> bytes:
    """
    BER-encode a list of sort keys.

    Args:
        sort_fields: attribute names; a leading ``-`` means descending

    Returns:
        The encoded control value, or ``b""`` if ``sort_fields`` is empty.

    """
    if not sort_fields:
        return b""
    sort_key_list = SortKeyList()
    for name in sort_fields:
        descending = name.startswith("-")
        attr_name = name[1:] if descending else name
        sort_key = SortKey()
        sort_key.setComponentByName(
            "attributeType", univ.OctetString(attr_name.encode("utf-8"))
        )
        if descending:
            sort_key.setComponentByName("reverseOrder", True)  # noqa: FBT003
        sort_key_list.append(sort_key)
    return encoder.encode(sort_key_list)


class ServerSideSortControl(LDAPControl):
    """
    Ask the server to sort search results (RFC 2891).

    Args:
        sort_fields: attribute names to sort by, most significant first; a
            leading ``-`` means descending

    Keyword Args:
        criticality: fail the search if the server can't sort

    """

    control_type = SORT_CONTROL_OID

    def __init__(
        self,
        sort_fields: list[str] | tuple[str, ...] = (),
        criticality: bool = False,
    ) -> None:
        self.sort_fields = tuple(sort_fields)
        super().__init__(self.control_type, criticality, encode_sort_keys(sort_fields))

    def encodeControlValue(self) -> bytes:  # noqa: N802
        return encode_sort_keys(self.sort_fields)


def paged_control(page_size: int, cookie: bytes | str = b"") -> SimplePagedResultsControl:
    """Build a Simple Paged Results request control."""
    return SimplePagedResultsControl(True, size=page_size, cookie=cookie)  # noqa: FBT003


def paged_cookie(serverctrls: list[LDAPControl] | None) -> bytes | None:
    """
    Find the paged results control among the controls the server returned and
    return its cookie.

    Returns:
        The cookie, or ``None`` if there is no paged results control or the
        cookie is empty (the last page).

    """
    for control in serverctrls or []:
        if control.controlType == SimplePagedResultsControl.controlType:
            return control.cookie or None
    return None
