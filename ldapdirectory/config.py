"""
Connection configuration for a directory server.

A :py:class:`DirectoryConfig` can be built directly, or loaded from the
``LDAP_SERVERS`` Django setting with :py:meth:`DirectoryConfig.from_settings`:

.. code-block:: python

    LDAP_SERVERS = {
        "default": {
            "url": "ldaps://ldap.example.com",
            "user": "cn=manager,dc=example,dc=com",
            "password": "the password",
            "pool_size": 5,
            "acquire_timeout": 10.0,
        }
    }
"""

from dataclasses import dataclass, field, fields
from typing import Any

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

#: The attribute most servers use to expose an entry's own DN
DEFAULT_DN_ATTRIBUTE = "entryDN"

#: Keys in a ``LDAP_SERVERS`` entry that differ from our field names
SETTINGS_KEY_MAP = {
    "url": "url",
    "user": "bind_dn",
    "password": "bind_password",
}

TLS_VERIFY_CHOICES = ("never", "always")


@dataclass(frozen=True)
class DirectoryConfig:
    """
    Everything needed to open and pool sessions against one directory server.

    Args:
        url: the LDAP URL of the server, e.g. ``ldaps://ldap.example.com``
        bind_dn: the DN our pooled sessions bind as
        bind_password: the password for ``bind_dn``

    Keyword Args:
        dn_attribute: the attribute to read an entry's DN from during
            authentication
        pool_size: the maximum number of sessions the pool will open
        acquire_timeout: seconds to wait for a session before giving up;
            ``None`` waits forever
        validation_retries: how many times to replace a dead idle session
            before :py:meth:`ConnectionPool.acquire` gives up
        page_size: the default page size for streaming searches
        timeout: network timeout in seconds for each operation
        use_starttls: issue StartTLS after connecting
        tls_verify: ``"never"`` or ``"always"``
        tls_ca_certfile: path to a CA certificate bundle
        tls_certfile: path to a client certificate
        tls_keyfile: path to the client certificate's key
        follow_referrals: let ``python-ldap`` chase referrals
        sizelimit: a client side size limit for searches

    Raises:
        ImproperlyConfigured: a value is out of range

    """

    url: str
    bind_dn: str
    bind_password: str = field(repr=False)
    dn_attribute: str = DEFAULT_DN_ATTRIBUTE
    pool_size: int = 10
    acquire_timeout: float | None = None
    validation_retries: int = 3
    page_size: int = 100
    timeout: float = 15.0
    use_starttls: bool = False
    tls_verify: str = "never"
    tls_ca_certfile: str | None = None
    tls_certfile: str | None = None
    tls_keyfile: str | None = None
    follow_referrals: bool = False
    sizelimit: int | None = None

    def __post_init__(self) -> None:
        if not self.url:
            msg = "DirectoryConfig: url is required"
            raise ImproperlyConfigured(msg)
        if self.pool_size < 1:
            msg = f"DirectoryConfig: pool_size must be at least 1, got {self.pool_size}"
            raise ImproperlyConfigured(msg)
        if self.page_size < 1:
            msg = f"DirectoryConfig: page_size must be at least 1, got {self.page_size}"
            raise ImproperlyConfigured(msg)
        if self.validation_retries < 0:
            msg = (
                "DirectoryConfig: validation_retries must not be negative, got "
                f"{self.validation_retries}"
            )
            raise ImproperlyConfigured(msg)
        if self.acquire_timeout is not None and self.acquire_timeout < 0:
            msg = (
                "DirectoryConfig: acquire_timeout must not be negative, got "
                f"{self.acquire_timeout}"
            )
            raise ImproperlyConfigured(msg)
        if self.tls_verify not in TLS_VERIFY_CHOICES:
            msg = f"Invalid tls_verify value: {self.tls_verify}"
            raise ImproperlyConfigured(msg)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DirectoryConfig":
        """
        Build a config from one ``LDAP_SERVERS`` entry.

        Args:
            data: the settings dict for one server

        Raises:
            ImproperlyConfigured: a required key is missing or a value is invalid

        Returns:
            A new :py:class:`DirectoryConfig`.

        """
        # Older settings files have separate "read" and "write" blocks; we
        # only ever talk to one endpoint, so use "read".
        if "read" in data and isinstance(data["read"], dict):
            data = data["read"]
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            name = SETTINGS_KEY_MAP.get(key, key)
            if name in known:
                kwargs[name] = value
        for key, name in SETTINGS_KEY_MAP.items():
            if name not in kwargs:
                msg = f"LDAP server settings have no '{key}' key"
                raise ImproperlyConfigured(msg)
        return cls(**kwargs)

    @classmethod
    def from_settings(cls, server: str = "default") -> "DirectoryConfig":
        """
        Load the config for ``server`` from ``settings.LDAP_SERVERS``.

        Args:
            server: the key into ``settings.LDAP_SERVERS``

        Raises:
            ImproperlyConfigured: the setting or the server key is missing

        Returns:
            A new :py:class:`DirectoryConfig`.

        """
        try:
            servers = settings.LDAP_SERVERS
        except AttributeError as e:
            msg = "settings.LDAP_SERVERS does not exist!"
            raise ImproperlyConfigured(msg) from e
        try:
            data = servers[server]
        except KeyError as e:
            msg = f"settings.LDAP_SERVERS has no key '{server}'"
            raise ImproperlyConfigured(msg) from e
        return cls.from_dict(data)
