from .client import DirectoryClient
from .config import DirectoryConfig
from .cursor import SearchCursor
from .dn import DistinguishedName, build_dn
from .entries import DirectoryEntry, Scope, SearchRequest
from .exceptions import (
    AuthenticationFailed,
    BindError,
    DirectoryConnectionError,
    DirectoryError,
    FilterError,
    MultipleResults,
    NotFound,
    PoolClosed,
    PoolError,
    PoolExhausted,
    ProtocolError,
    SchemaMismatchError,
)
from .filters import And, Equality, Filter, Not, Or, Present, Raw, Substring, compile_filter
from .groups import GroupResolver, GroupsResult, MembershipResult
from .pool import ConnectionPool, Lease
from .records import Materialized, Record
from .session import DirectorySession

__version__ = "0.1.0"
