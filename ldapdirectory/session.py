"""
A single bound connection to the directory.

:py:class:`DirectorySession` wraps a ``python-ldap`` ``LDAPObject`` and
translates its exceptions into ours:

* ``ldap.SERVER_DOWN``, ``ldap.CONNECT_ERROR`` and ``ldap.TIMEOUT`` become
  :py:class:`~ldapdirectory.exceptions.DirectoryConnectionError` and mark the
  session unhealthy, so the pool throws it away instead of reusing it;
* ``ldap.INVALID_CREDENTIALS`` during a bind becomes
  :py:class:`~ldapdirectory.exceptions.BindError`;
* every other ``ldap.LDAPError`` becomes
  :py:class:`~ldapdirectory.exceptions.ProtocolError`.
"""

import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager, suppress
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

from ldap import modlist

from . import ldap
from .config import DirectoryConfig
from .controls import ServerSideSortControl, paged_control, paged_cookie
from .entries import DirectoryEntry, SearchRequest
from .exceptions import BindError, DirectoryConnectionError, ProtocolError
from .typing import ModifyDeleteModList

if TYPE_CHECKING:
    from ldap.ldapobject import LDAPObject

logger = logging.getLogger(__name__)

T = TypeVar("T")

#: ``python-ldap`` errors after which the connection can't be trusted
TRANSPORT_ERRORS = (ldap.SERVER_DOWN, ldap.CONNECT_ERROR, ldap.TIMEOUT)


def _check_tls_file(path: str, label: str) -> None:
    p = Path(path)
    if not p.exists():
        msg = f"{label} file does not exist: {path}"
        raise OSError(msg)
    if not p.is_file():
        msg = f"{label} file is not a file: {path}"
        raise OSError(msg)


def connect(
    config: DirectoryConfig, dn: str | None = None, password: str | None = None
) -> "LDAPObject":
    """
    Create, configure and bind a new ``LDAPObject``.

    Args:
        config: the server to connect to
        dn: bind as this DN instead of ``config.bind_dn``
        password: the password for ``dn``

    Raises:
        OSError: a configured TLS CA, certificate or key file is missing
        BindError: the server rejected the bind
        DirectoryConnectionError: the server could not be reached
        ProtocolError: the server failed the connection setup some other way

    Returns:
        A bound ``LDAPObject``.

    """
    if dn is None:
        dn = config.bind_dn
        password = config.bind_password
    ldap_object = ldap.initialize(config.url)
    ldap_object.set_option(ldap.OPT_REFERRALS, 1 if config.follow_referrals else 0)
    ldap_object.set_option(ldap.OPT_NETWORK_TIMEOUT, float(config.timeout))
    ldap_object.set_option(ldap.OPT_TIMEOUT, float(config.timeout))
    if config.sizelimit:
        ldap_object.set_option(ldap.OPT_SIZELIMIT, int(config.sizelimit))
    if config.tls_verify == "always":
        ldap_object.set_option(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_DEMAND)
    else:
        ldap_object.set_option(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_NEVER)
    if config.tls_ca_certfile:
        _check_tls_file(config.tls_ca_certfile, "CA Certificate")
        ldap_object.set_option(ldap.OPT_X_TLS_CACERTFILE, config.tls_ca_certfile)
    if config.tls_certfile:
        _check_tls_file(config.tls_certfile, "TLS Certificate")
        ldap_object.set_option(ldap.OPT_X_TLS_CERTFILE, config.tls_certfile)
    if config.tls_keyfile:
        _check_tls_file(config.tls_keyfile, "TLS Key")
        ldap_object.set_option(ldap.OPT_X_TLS_KEYFILE, config.tls_keyfile)
    ldap_object.set_option(ldap.OPT_X_TLS_NEWCTX, 0)
    try:
        if config.use_starttls:
            ldap_object.start_tls_s()
        ldap_object.simple_bind_s(dn, password)
    except ldap.INVALID_CREDENTIALS as e:
        with suppress(ldap.LDAPError):
            ldap_object.unbind_s()
        msg = f"Bind as {dn} was rejected"
        raise BindError(msg) from e
    except TRANSPORT_ERRORS as e:
        msg = f"Could not connect to {config.url}: {e}"
        raise DirectoryConnectionError(msg) from e
    except ldap.LDAPError as e:
        with suppress(ldap.LDAPError):
            ldap_object.unbind_s()
        raise ProtocolError.from_ldap_error(f"Connecting to {config.url}", e) from e
    logger.debug("ldapdirectory.session.connect url=%s dn=%s", config.url, dn)
    return ldap_object


class DirectorySession:
    """
    One live, bound connection.

    Sessions are handed out by :py:class:`~ldapdirectory.pool.ConnectionPool`
    and are never used by two callers at once.

    Args:
        connection: a bound ``LDAPObject``
        bound_dn: the DN ``connection`` is bound as

    """

    def __init__(self, connection: "LDAPObject", bound_dn: str) -> None:
        self.connection = connection
        self.bound_dn = bound_dn
        #: ``time.monotonic()`` of the last successful liveness check
        self.last_validated = time.monotonic()
        #: ``False`` once a transport error or timeout has happened on us
        self.healthy = True
        self.closed = False

    @classmethod
    def open(
        cls,
        config: DirectoryConfig,
        dn: str | None = None,
        password: str | None = None,
    ) -> "DirectorySession":
        """
        Connect and bind a new session.  See :py:func:`connect`.
        """
        bound_dn = dn if dn is not None else config.bind_dn
        return cls(connect(config, dn=dn, password=password), bound_dn)

    def __repr__(self) -> str:
        return (
            f"<DirectorySession {self.bound_dn} healthy={self.healthy} "
            f"closed={self.closed}>"
        )

    @contextmanager
    def _translate(self, action: str) -> Iterator[None]:
        try:
            yield
        except TRANSPORT_ERRORS as e:
            self.healthy = False
            logger.warning(
                "ldapdirectory.session.transport-error action=%s error=%s", action, e
            )
            msg = f"{action}: {e}"
            raise DirectoryConnectionError(msg) from e
        except ldap.LDAPError as e:
            raise ProtocolError.from_ldap_error(action, e) from e

    def _call(self, action: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        with self._translate(action):
            return func(*args, **kwargs)

    def is_alive(self) -> bool:
        """
        Do a cheap round trip to check that the server still answers us.

        Returns:
            ``True`` if the "Who am I?" operation succeeded.

        """
        if self.closed or not self.healthy:
            return False
        try:
            self.connection.whoami_s()
        except ldap.LDAPError as e:
            self.healthy = False
            logger.warning(
                "ldapdirectory.session.validate.failed dn=%s error=%s", self.bound_dn, e
            )
            return False
        self.last_validated = time.monotonic()
        return True

    def _controls(self, request: SearchRequest, page_size: int, cookie: bytes | str):
        controls = [paged_control(page_size, cookie)]
        if request.sort:
            # The paged control goes first
            controls.append(ServerSideSortControl(request.sort))
        return controls

    def search_page(
        self, request: SearchRequest, page_size: int, cookie: bytes | str = b""
    ) -> tuple[list[DirectoryEntry], bytes | None]:
        """
        Fetch one page of results.

        Args:
            request: what to search for
            page_size: how many entries to ask for; ``0`` abandons the search
            cookie: the cookie from the previous page, or ``b""`` for the first

        Raises:
            DirectoryConnectionError: the transport failed
            ProtocolError: the server rejected the search

        Returns:
            The entries on this page and the cookie for the next page, which is
            ``None`` when there are no more pages.

        """
        action = f"Searching {request.base} for {request.filterstr}"
        with self._translate(action):
            msgid = self.connection.search_ext(
                request.base,
                int(request.scope),
                request.filterstr,
                request.attrlist,
                serverctrls=self._controls(request, page_size, cookie),
            )
            _, rdata, _, serverctrls = self.connection.result3(msgid)
        # Active Directory returns search references as entries with a list
        # instead of a dict of attributes; ignore those
        entries = [
            DirectoryEntry.from_ldap((dn, attrs))
            for dn, attrs in rdata
            if isinstance(attrs, dict)
        ]
        return entries, paged_cookie(serverctrls)

    def abandon_paged(self, request: SearchRequest, cookie: bytes) -> None:
        """
        Tell the server we won't ask for any more pages of a paged search, so
        it can drop its state for it.
        """
        self.search_page(request, 0, cookie)

    def search(self, request: SearchRequest, page_size: int) -> list[DirectoryEntry]:
        """
        Run ``request`` to completion and return every entry.
        """
        results: list[DirectoryEntry] = []
        cookie: bytes | None = b""
        while cookie is not None:
            page, cookie = self.search_page(request, page_size, cookie)
            results.extend(page)
        return results

    def add(self, dn: str, attributes: dict[str, list[bytes]]) -> None:
        self._call(f"Adding {dn}", self.connection.add_s, dn, modlist.addModlist(attributes))

    def modify(self, dn: str, changes: ModifyDeleteModList) -> None:
        self._call(f"Modifying {dn}", self.connection.modify_s, dn, changes)

    def delete(self, dn: str) -> None:
        self._call(f"Deleting {dn}", self.connection.delete_s, dn)

    def rename(self, dn: str, new_rdn: str, new_superior: str | None = None) -> None:
        self._call(
            f"Renaming {dn} to {new_rdn}",
            self.connection.rename_s,
            dn,
            new_rdn,
            newsuperior=new_superior,
            delold=1,
        )

    def close(self) -> None:
        """Unbind.  Safe to call more than once."""
        if self.closed:
            return
        self.closed = True
        with suppress(ldap.LDAPError):
            self.connection.unbind_s()
        logger.debug("ldapdirectory.session.close dn=%s", self.bound_dn)
