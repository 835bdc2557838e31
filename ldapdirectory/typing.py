"""
Type aliases for the raw data structures python-ldap hands us and expects.
"""

DeleteModListEntry = tuple[int, str, None]
ModifyModListEntry = tuple[int, str, list[bytes]]
ModifyDeleteModList = list[DeleteModListEntry | ModifyModListEntry]
AddModlist = list[tuple[str, list[bytes]]]
LDAPData = tuple[str, dict[str, list[bytes]]]
#: What callers may pass as the value of an attribute when writing
AttributeInput = str | bytes | int | list | tuple | set | None
