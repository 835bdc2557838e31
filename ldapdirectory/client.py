"""
The public face of ldapdirectory.

:py:class:`DirectoryClient` owns a :py:class:`~ldapdirectory.pool.ConnectionPool`
and offers the everyday directory operations on top of it:

.. code-block:: python

    from ldapdirectory import DirectoryClient, Equality, Scope

    with DirectoryClient.from_settings() as client:
        fred = client.search(
            "ou=people,dc=example,dc=com",
            Scope.ONELEVEL,
            Equality("uid", "fred"),
            attributes=["cn", "mail"],
        )
        client.update("fred", "ou=people,dc=example,dc=com", {"mail": "fred@example.com"})
"""

import logging
from collections.abc import Iterable, Mapping
from contextlib import AbstractContextManager
from typing import Any, cast

from . import ldap
from .config import DirectoryConfig
from .cursor import SearchCursor, leased_cursor
from .dn import build_dn
from .entries import DirectoryEntry, Scope, SearchRequest
from .exceptions import (
    AuthenticationFailed,
    BindError,
    MultipleResults,
    NotFound,
    ProtocolError,
)
from .filters import Filter
from .groups import GroupResolver, GroupsResult, MembershipResult
from .pool import ConnectionPool, SessionFactory
from .records import Record
from .session import DirectorySession
from .typing import AttributeInput, ModifyDeleteModList

logger = logging.getLogger(__name__)


def encode_values(value: Any) -> list[bytes]:
    """
    Turn an attribute value given by a caller into the ``list[bytes]`` that
    ``python-ldap`` wants.  ``None`` and empty lists become ``[]``.
    """
    if value is None:
        return []
    if isinstance(value, (str, bytes, int)):
        value = [value]
    out: list[bytes] = []
    for v in value:
        if isinstance(v, bytes):
            out.append(v)
        elif isinstance(v, bool):
            out.append(b"TRUE" if v else b"FALSE")
        else:
            out.append(str(v).encode("utf-8"))
    return out


def _rdn(rdn_attribute: str, value: str) -> str:
    # build_dn() with an empty base gives "attr=value,"
    return build_dn(rdn_attribute, value, "")[:-1]


class DirectoryClient:
    """
    High level directory operations over a pool of sessions.

    Args:
        pool_or_config: an existing pool, or the config to build one from

    Keyword Args:
        session_factory: passed to :py:class:`~ldapdirectory.pool.ConnectionPool`
            when we build the pool ourselves
        member_attribute: the attribute group entries list members in
        group_object_class: the object class of group entries
        max_workers: cap on parallel member lookups in :py:meth:`get_members`

    """

    def __init__(
        self,
        pool_or_config: ConnectionPool | DirectoryConfig,
        session_factory: SessionFactory | None = None,
        member_attribute: str = "member",
        group_object_class: str = "groupOfNames",
        max_workers: int | None = None,
    ) -> None:
        if isinstance(pool_or_config, ConnectionPool):
            self.pool = pool_or_config
        else:
            self.pool = ConnectionPool(pool_or_config, session_factory=session_factory)
        self.config = self.pool.config
        self.groups = GroupResolver(
            self.pool,
            member_attribute=member_attribute,
            group_object_class=group_object_class,
            max_workers=max_workers,
        )

    @classmethod
    def from_settings(cls, server: str = "default", **kwargs: Any) -> "DirectoryClient":
        """
        Build a client for ``settings.LDAP_SERVERS[server]``.

        Raises:
            django.core.exceptions.ImproperlyConfigured: the settings are
                missing or invalid

        """
        return cls(DirectoryConfig.from_settings(server), **kwargs)

    def __repr__(self) -> str:
        return f"<DirectoryClient {self.config.url}>"

    # -----------------------
    # Searching
    # -----------------------

    def search(
        self,
        base: str,
        scope: Scope | int,
        filter: Filter | str,  # noqa: A002
        attributes: Iterable[str] | None = None,
        record_type: type[Record] | None = None,
    ) -> DirectoryEntry | Record:
        """
        Find exactly one entry.

        Args:
            base: where to search from
            scope: how far below ``base`` to look
            filter: what to look for

        Keyword Args:
            attributes: the attributes to return; defaults to
                ``record_type.attributes()``, or all user attributes
            record_type: return an instance of this instead of a
                :py:class:`~ldapdirectory.entries.DirectoryEntry`

        Raises:
            NotFound: nothing matched
            MultipleResults: more than one entry matched
            SchemaMismatchError: the entry didn't fit ``record_type``

        Returns:
            The entry, or a ``record_type`` instance.

        """
        if attributes is None and record_type is not None:
            attributes = record_type.attributes()
        # Two is enough to tell "one" from "more than one"
        request = SearchRequest(
            base,
            Scope(scope),
            filter,
            attributes=tuple(attributes) if attributes is not None else None,
            page_size=2,
        )
        try:
            with leased_cursor(self.pool, request) as cursor:
                first = next(cursor, None)
                second = next(cursor, None) if first is not None else None
        except ProtocolError as e:
            if e.is_no_such_object:
                msg = f"No entry matching {request.filterstr} under {base}"
                raise NotFound(msg) from e
            raise
        if first is None:
            msg = f"No entry matching {request.filterstr} under {base}"
            raise NotFound(msg)
        if second is not None:
            msg = f"More than one entry matches {request.filterstr} under {base}"
            raise MultipleResults(msg)
        if record_type is not None:
            return record_type.from_entry(first).unwrap()
        return first

    def streaming_search(
        self,
        base: str,
        scope: Scope | int,
        filter: Filter | str,  # noqa: A002
        attributes: Iterable[str] | None = None,
        page_size: int | None = None,
        sort: Iterable[str] | None = None,
    ) -> AbstractContextManager[SearchCursor]:
        """
        Stream every matching entry, a page at a time.

        .. code-block:: python

            with client.streaming_search(base, Scope.SUBTREE, "(objectClass=person)") as cursor:
                for entry in cursor:
                    ...

        A pooled session is held until the ``with`` block exits.

        Keyword Args:
            attributes: the attributes to return
            page_size: entries per page; defaults to ``config.page_size``
            sort: attribute names for server-side sorting; prefix with ``-``
                for descending

        Returns:
            A context manager yielding a
            :py:class:`~ldapdirectory.cursor.SearchCursor`.

        """
        request = SearchRequest(
            base,
            Scope(scope),
            filter,
            attributes=tuple(attributes) if attributes is not None else None,
            page_size=page_size,
            sort=tuple(sort or ()),
        )
        return leased_cursor(self.pool, request)

    # -----------------------
    # Writing
    # -----------------------

    def create(
        self,
        uid: str,
        base: str,
        attributes: Mapping[str, AttributeInput] | Record,
        rdn_attribute: str = "uid",
    ) -> str:
        """
        Add the entry ``<rdn_attribute>=<uid>,<base>``.

        Args:
            uid: the RDN value of the new entry
            base: the parent DN
            attributes: the new entry's attributes, or a record to take them
                from.  The RDN attribute is added if missing.

        Raises:
            ProtocolError: the server refused, e.g. the entry already exists

        Returns:
            The DN of the new entry.

        """
        if isinstance(attributes, Record):
            attrs = attributes.to_attributes()
        else:
            attrs = {
                name: encode_values(value)
                for name, value in attributes.items()
                if encode_values(value)
            }
        if rdn_attribute.lower() not in {name.lower() for name in attrs}:
            attrs[rdn_attribute] = [uid.encode("utf-8")]
        dn = build_dn(rdn_attribute, uid, base)
        with self.pool.acquire() as session:
            session.add(dn, attrs)
        logger.info("ldapdirectory.client.create dn=%s", dn)
        return dn

    def update(
        self,
        uid: str,
        base: str,
        changes: Mapping[str, AttributeInput],
        new_uid: str | None = None,
        rdn_attribute: str = "uid",
    ) -> str:
        """
        Change attributes of ``<rdn_attribute>=<uid>,<base>`` and optionally
        rename it.

        Each attribute in ``changes`` has its values replaced; ``None`` or an
        empty list removes the attribute.  If ``new_uid`` differs from ``uid``
        other than by case, the entry is then renamed.

        Raises:
            NotFound: there is no such entry
            ProtocolError: the server refused a change

        Returns:
            The DN of the entry after any rename.

        """
        dn = build_dn(rdn_attribute, uid, base)
        modlist: ModifyDeleteModList = []
        for name, value in changes.items():
            values = encode_values(value)
            if values:
                modlist.append((ldap.MOD_REPLACE, name, values))
            else:
                modlist.append((ldap.MOD_DELETE, name, None))
        with self.pool.acquire() as session:
            try:
                if modlist:
                    session.modify(dn, modlist)
                else:
                    logger.debug("ldapdirectory.client.update.no-changes dn=%s", dn)
                if new_uid is not None and new_uid.lower() != uid.lower():
                    session.rename(dn, _rdn(rdn_attribute, new_uid))
                    logger.info("ldapdirectory.client.rename dn=%s new_uid=%s", dn, new_uid)
                    dn = build_dn(rdn_attribute, new_uid, base)
            except ProtocolError as e:
                if e.is_no_such_object:
                    msg = f"No entry with dn {dn}"
                    raise NotFound(msg) from e
                raise
        logger.info("ldapdirectory.client.update dn=%s changes=%d", dn, len(modlist))
        return dn

    def delete(self, uid: str, base: str, rdn_attribute: str = "uid") -> None:
        """
        Delete ``<rdn_attribute>=<uid>,<base>``.

        Raises:
            NotFound: there is no such entry

        """
        dn = build_dn(rdn_attribute, uid, base)
        with self.pool.acquire() as session:
            try:
                session.delete(dn)
            except ProtocolError as e:
                if e.is_no_such_object:
                    msg = f"No entry with dn {dn}"
                    raise NotFound(msg) from e
                raise
        logger.info("ldapdirectory.client.delete dn=%s", dn)

    # -----------------------
    # Authentication
    # -----------------------

    def authenticate(
        self,
        base: str,
        uid: str,
        password: str,
        filter: Filter | str,  # noqa: A002
    ) -> str:
        """
        Check ``password`` for the user directly below ``base`` that matches
        ``filter``.

        The user's DN is read from the ``config.dn_attribute`` attribute if the
        server returns it, else taken from the entry itself.  That lookup is an
        ordinary pooled search, so on a cold pool it opens the first pooled
        session; its lease is given back before the bind.  The bind happens on a
        fresh connection that never enters the pool.

        Args:
            base: the DN the user lives directly below
            uid: the user's id; only used in messages
            password: the password to check
            filter: selects the user

        Raises:
            NotFound: no user matched ``filter``
            MultipleResults: more than one user matched ``filter``
            AuthenticationFailed: the password is wrong or empty

        Returns:
            The DN of the authenticated user.

        """
        dn_attribute = self.config.dn_attribute
        try:
            entry = self.search(base, Scope.ONELEVEL, filter, attributes=[dn_attribute])
        except NotFound:
            logger.warning("ldapdirectory.auth.no_such_user user=%s", uid)
            raise
        entry = cast("DirectoryEntry", entry)
        user_dn = entry.first_text(dn_attribute) or entry.dn
        if not password:
            # An empty password would be an unauthenticated bind, which
            # servers report as a success
            logger.warning("ldapdirectory.auth.empty_password user=%s", uid)
            msg = f"Authentication failed for {uid}"
            raise AuthenticationFailed(msg)
        try:
            session = DirectorySession.open(self.config, dn=user_dn, password=password)
        except BindError as e:
            logger.warning("ldapdirectory.auth.invalid_credentials user=%s", uid)
            msg = f"Authentication failed for {uid}"
            raise AuthenticationFailed(msg) from e
        session.close()
        logger.info("ldapdirectory.auth.success user=%s", uid)
        return user_dn

    # -----------------------
    # Groups
    # -----------------------

    def create_group(
        self,
        name: str,
        group_ou: str,
        description: str,
        members: Iterable[str] = (),
    ) -> str:
        """See :py:meth:`GroupResolver.create_group`."""
        return self.groups.create_group(name, group_ou, description, members=members)

    def add_user_to_group(self, group_dn: str, user_dns: str | Iterable[str]) -> None:
        """See :py:meth:`GroupResolver.add_member`."""
        self.groups.add_member(group_dn, user_dns)

    def remove_users_from_group(self, group_dn: str, user_dns: Iterable[str]) -> None:
        """See :py:meth:`GroupResolver.remove_members`."""
        self.groups.remove_members(group_dn, user_dns)

    def get_members(
        self,
        group_dn: str,
        record_type: type[Record] | None = None,
        attributes: Iterable[str] | None = None,
    ) -> MembershipResult:
        """See :py:meth:`GroupResolver.list_members`."""
        return self.groups.list_members(group_dn, record_type=record_type, attributes=attributes)

    def get_associated_groups(
        self,
        group_ou: str,
        user_dn: str,
        record_type: type[Record] | None = None,
    ) -> GroupsResult:
        """
        Return the groups under ``group_ou`` that ``user_dn`` is a member of.
        See :py:meth:`GroupResolver.groups_for_entry`.

        Returns:
            A :py:class:`~ldapdirectory.groups.GroupsResult`.  Groups that
            didn't fit ``record_type`` are in its ``errors``, not raised.

        """
        return self.groups.groups_for_entry(group_ou, user_dn, record_type=record_type)

    # -----------------------
    # Lifecycle
    # -----------------------

    def close(self) -> None:
        """Shut down the pool."""
        self.pool.shutdown()

    def __enter__(self) -> "DirectoryClient":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()
