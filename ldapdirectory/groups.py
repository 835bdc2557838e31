"""
Group membership operations.

Groups are ``groupOfNames`` entries whose ``member`` attribute holds the DNs of
their members.  Resolving a group's members takes one search for the group and
then one search per member; the member searches run in parallel, each on its
own pooled session.
"""

import logging
from collections.abc import Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from typing import Any

from . import ldap
from .cursor import SearchCursor, leased_cursor
from .dn import build_dn
from .entries import DirectoryEntry, Scope, SearchRequest
from .exceptions import NotFound, ProtocolError, SchemaMismatchError
from .filters import And, Equality, Present
from .pool import ConnectionPool
from .records import Record

logger = logging.getLogger(__name__)


@dataclass
class MembershipResult:
    """
    The members of a group.

    Attributes:
        members: one :py:class:`~ldapdirectory.entries.DirectoryEntry` or
            record per member that could be read, in the order the group
            lists them
        skipped: how many member DNs pointed at entries that don't exist
        warnings: a message for each skipped member
        errors: one :py:class:`~ldapdirectory.exceptions.SchemaMismatchError`
            per member entry that did not fit the record type

    """

    members: list[Any] = field(default_factory=list)
    skipped: int = 0
    warnings: list[str] = field(default_factory=list)
    errors: list[SchemaMismatchError] = field(default_factory=list)


@dataclass
class GroupsResult:
    """
    The groups an entry belongs to.

    Attributes:
        groups: one :py:class:`~ldapdirectory.entries.DirectoryEntry` or
            record per group that could be read, in search order
        errors: one :py:class:`~ldapdirectory.exceptions.SchemaMismatchError`
            per group entry that did not fit the record type

    """

    groups: list[Any] = field(default_factory=list)
    errors: list[SchemaMismatchError] = field(default_factory=list)


def _as_list(dns: str | Iterable[str]) -> list[str]:
    if isinstance(dns, str):
        return [dns]
    return list(dns)


class GroupResolver:
    """
    Read and change group membership.

    Args:
        pool: where to get sessions from

    Keyword Args:
        member_attribute: the attribute holding member DNs
        group_object_class: the object class of group entries
        max_workers: cap on parallel member lookups; never more than the pool
            size

    """

    def __init__(
        self,
        pool: ConnectionPool,
        member_attribute: str = "member",
        group_object_class: str = "groupOfNames",
        max_workers: int | None = None,
    ) -> None:
        self.pool = pool
        self.member_attribute = member_attribute
        self.group_object_class = group_object_class
        self.max_workers = max_workers

    def _modify_group(self, group_dn: str, changes: list) -> None:
        with self.pool.acquire() as session:
            try:
                session.modify(group_dn, changes)
            except ProtocolError as e:
                if e.is_no_such_object:
                    msg = f"No group with dn {group_dn}"
                    raise NotFound(msg) from e
                raise

    def create_group(
        self,
        name: str,
        group_ou: str,
        description: str,
        members: Iterable[str] = (),
    ) -> str:
        """
        Add a new group named ``name`` under ``group_ou``.

        Most servers require a ``groupOfNames`` entry to have at least one
        member, so pass ``members`` unless yours doesn't.

        Returns:
            The DN of the new group.

        """
        dn = build_dn("cn", name, group_ou)
        attrs: dict[str, list[bytes]] = {
            "objectClass": [b"top", self.group_object_class.encode("utf-8")],
            "cn": [name.encode("utf-8")],
            "description": [description.encode("utf-8")],
        }
        member_values = [m.encode("utf-8") for m in members]
        if member_values:
            attrs[self.member_attribute] = member_values
        with self.pool.acquire() as session:
            session.add(dn, attrs)
        logger.info("ldapdirectory.groups.create dn=%s members=%d", dn, len(member_values))
        return dn

    def add_member(self, group_dn: str, member_dns: str | Iterable[str]) -> None:
        """
        Add one or more members to a group in a single modify.

        Raises:
            NotFound: there is no group ``group_dn``
            ProtocolError: the server refused, e.g. one of the DNs is already
                a member

        """
        values = [dn.encode("utf-8") for dn in _as_list(member_dns)]
        if not values:
            return
        self._modify_group(group_dn, [(ldap.MOD_ADD, self.member_attribute, values)])
        logger.info("ldapdirectory.groups.add-member group=%s count=%d", group_dn, len(values))

    def remove_members(self, group_dn: str, member_dns: str | Iterable[str]) -> None:
        """
        Remove members from a group.

        All of ``member_dns`` go in one ``MOD_DELETE``, so the server removes
        either all of them or none.  If any of them isn't a member, the server
        refuses the whole change.

        Raises:
            NotFound: there is no group ``group_dn``
            ProtocolError: the server refused the change

        """
        values = [dn.encode("utf-8") for dn in _as_list(member_dns)]
        if not values:
            return
        self._modify_group(group_dn, [(ldap.MOD_DELETE, self.member_attribute, values)])
        logger.info(
            "ldapdirectory.groups.remove-members group=%s count=%d", group_dn, len(values)
        )

    def member_dns(self, group_dn: str) -> list[str]:
        """
        Return the DNs listed in the group's member attribute.

        Raises:
            NotFound: there is no group ``group_dn``

        """
        request = SearchRequest(
            group_dn,
            Scope.BASE,
            Present("objectClass"),
            attributes=(self.member_attribute,),
        )
        with self.pool.acquire() as session:
            try:
                entries = session.search(request, self.pool.config.page_size)
            except ProtocolError as e:
                if e.is_no_such_object:
                    msg = f"No group with dn {group_dn}"
                    raise NotFound(msg) from e
                raise
        if not entries:
            msg = f"No group with dn {group_dn}"
            raise NotFound(msg)
        return entries[0].text(self.member_attribute)

    def _fetch_member(
        self, dn: str, attributes: tuple[str, ...] | None
    ) -> DirectoryEntry | None:
        request = SearchRequest(dn, Scope.BASE, Present("objectClass"), attributes=attributes)
        with self.pool.acquire() as session:
            try:
                entries = session.search(request, 1)
            except ProtocolError as e:
                if e.is_no_such_object:
                    return None
                raise
        return entries[0] if entries else None

    def list_members(
        self,
        group_dn: str,
        record_type: type[Record] | None = None,
        attributes: Iterable[str] | None = None,
    ) -> MembershipResult:
        """
        Look up every member of a group.

        The group is read first and its session handed back; then each member
        is read on its own pooled session, several at a time.  Members whose
        entries no longer exist are skipped and counted.  Any other failure
        cancels the lookups that haven't started and is raised.

        Args:
            group_dn: the group to expand

        Keyword Args:
            record_type: materialize members as this record type; otherwise
                members are :py:class:`~ldapdirectory.entries.DirectoryEntry`
            attributes: the attributes to read for each member; defaults to
                ``record_type.attributes()``, or all user attributes

        Raises:
            NotFound: there is no group ``group_dn``
            PoolExhausted: a session could not be leased in time
            DirectoryConnectionError: the transport failed
            ProtocolError: a member lookup failed for a reason other than the
                member not existing

        """
        dns = self.member_dns(group_dn)
        if attributes is None and record_type is not None:
            attributes = record_type.attributes()
        attrs = tuple(attributes) if attributes is not None else None
        result = MembershipResult()
        if not dns:
            return result
        workers = min(len(dns), self.pool.size, self.max_workers or self.pool.size)
        logger.debug(
            "ldapdirectory.groups.list-members group=%s members=%d workers=%d",
            group_dn,
            len(dns),
            workers,
        )
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures: list[Future] = [
                executor.submit(self._fetch_member, dn, attrs) for dn in dns
            ]
            try:
                for dn, future in zip(dns, futures):
                    entry = future.result()
                    if entry is None:
                        msg = f"Group {group_dn} lists member {dn}, which does not exist"
                        logger.warning(
                            "ldapdirectory.groups.dangling-member group=%s member=%s",
                            group_dn,
                            dn,
                        )
                        result.skipped += 1
                        result.warnings.append(msg)
                        continue
                    if record_type is None:
                        result.members.append(entry)
                        continue
                    materialized = record_type.from_entry(entry)
                    if materialized.errors:
                        result.errors.append(
                            SchemaMismatchError(entry.dn, dict(materialized.errors))
                        )
                    else:
                        result.members.append(materialized.record)
            except BaseException:
                for pending in futures:
                    pending.cancel()
                raise
        return result

    def list_groups_for_entry(
        self,
        base_dn: str,
        entry_dn: str,
        attributes: Iterable[str] | None = None,
    ) -> AbstractContextManager[SearchCursor]:
        """
        Find the groups below ``base_dn`` that list ``entry_dn`` as a member.

        Returns:
            A context manager yielding a
            :py:class:`~ldapdirectory.cursor.SearchCursor` over the groups.

        """
        request = SearchRequest(
            base_dn,
            Scope.SUBTREE,
            And(
                Equality("objectClass", self.group_object_class),
                Equality(self.member_attribute, entry_dn),
            ),
            attributes=tuple(attributes) if attributes is not None else None,
        )
        return leased_cursor(self.pool, request)


    def groups_for_entry(
        self,
        base_dn: str,
        entry_dn: str,
        record_type: type[Record] | None = None,
    ) -> GroupsResult:
        """
        Read every group below ``base_dn`` that lists ``entry_dn`` as a member.

        Unlike :py:meth:`list_groups_for_entry` this drains the search and
        hands the session back before returning.  Group entries that don't fit
        ``record_type`` are collected in ``errors``; the rest are still
        returned.

        Keyword Args:
            record_type: materialize groups as this record type; otherwise
                groups are :py:class:`~ldapdirectory.entries.DirectoryEntry`

        """
        attributes = record_type.attributes() if record_type is not None else None
        result = GroupsResult()
        with self.list_groups_for_entry(base_dn, entry_dn, attributes) as cursor:
            if record_type is None:
                result.groups.extend(cursor)
                return result
            for materialized in cursor.records(record_type):
                if materialized.ok:
                    result.groups.append(materialized.record)
                else:
                    result.errors.append(
                        SchemaMismatchError(materialized.dn, dict(materialized.errors))
                    )
        if result.errors:
            logger.warning(
                "ldapdirectory.groups.groups-for-entry.mismatch entry=%s errors=%d",
                entry_dn,
                len(result.errors),
            )
        return result
