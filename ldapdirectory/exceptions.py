"""
Exceptions raised by ldapdirectory.

Everything we raise derives from :py:class:`DirectoryError`, so callers that
don't care about the details can catch that one class.  The classes split into
three families:

* infrastructure failures (:py:class:`DirectoryConnectionError`,
  :py:class:`PoolExhausted`, :py:class:`PoolClosed`) which abort the current
  call and are worth retrying later,
* directory answers (:py:class:`ProtocolError`, :py:class:`NotFound`,
  :py:class:`MultipleResults`, :py:class:`AuthenticationFailed`), and
* caller bugs or data-shape problems (:py:class:`FilterError`,
  :py:class:`SchemaMismatchError`).
"""

from typing import Any

#: LDAP result code for noSuchObject
NO_SUCH_OBJECT = 32


class DirectoryError(Exception):
    """Base class for all ldapdirectory errors."""


class DirectoryConnectionError(DirectoryError):
    """
    The transport failed, timed out, or the server could not be reached.

    The session on which this happened is unusable and will be discarded by
    the pool rather than recycled.
    """


class BindError(DirectoryConnectionError):
    """The directory rejected a bind."""


class PoolError(DirectoryError):
    """Base class for connection pool capacity and lifecycle errors."""


class PoolExhausted(PoolError):
    """
    No session could be leased: the acquire timeout elapsed, or idle sessions
    kept failing validation and could not be replaced.
    """


class PoolClosed(PoolError):
    """The pool has been shut down."""


class FilterError(DirectoryError, ValueError):
    """A filter was built with a malformed attribute name or value."""


class ProtocolError(DirectoryError):
    """
    The directory rejected an operation.

    Args:
        message: a human readable summary of what we were doing

    Keyword Args:
        result_code: the LDAP result code from the server, if any
        description: the server's short description of the result code
        info: the server's diagnostic message

    """

    def __init__(
        self,
        message: str,
        result_code: int | None = None,
        description: str = "",
        info: str = "",
    ) -> None:
        super().__init__(message)
        self.result_code = result_code
        self.description = description
        self.info = info

    @classmethod
    def from_ldap_error(cls, message: str, error: Exception) -> "ProtocolError":
        """
        Build a :py:class:`ProtocolError` from a ``python-ldap`` exception.

        ``python-ldap`` puts a dict with ``result``, ``desc`` and ``info`` keys
        in ``args[0]`` of its exceptions.

        Args:
            message: what we were doing when the error happened
            error: the ``ldap.LDAPError`` we caught

        Returns:
            A new :py:class:`ProtocolError`.

        """
        details: dict[str, Any] = {}
        if error.args and isinstance(error.args[0], dict):
            details = error.args[0]
        info = details.get("info", "")
        if isinstance(info, bytes):
            info = info.decode("utf-8", "replace")
        return cls(
            f"{message}: {details.get('desc', error)}",
            result_code=details.get("result"),
            description=details.get("desc", ""),
            info=str(info),
        )

    @property
    def is_no_such_object(self) -> bool:
        return self.result_code == NO_SUCH_OBJECT


class SchemaMismatchError(DirectoryError):
    """
    An entry's attributes did not fit the requested record type.

    Args:
        dn: the DN of the offending entry
        errors: a mapping of attribute name to the list of problems found

    """

    def __init__(self, dn: str, errors: dict[str, list[str]]) -> None:
        self.dn = dn
        self.errors = errors
        details = "; ".join(
            f"{attr}: {', '.join(messages)}" for attr, messages in errors.items()
        )
        super().__init__(f"Entry {dn} does not fit the record type: {details}")


class NotFound(DirectoryError):
    """No entry matched where exactly one was expected."""


class MultipleResults(DirectoryError):
    """More than one entry matched where exactly one was expected."""


class AuthenticationFailed(DirectoryError):
    """The user's credentials were rejected."""
