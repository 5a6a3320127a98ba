"""This module is used for ad-hoc utilities."""
import sys
from typing import Any, Type
from pathlib import Path
from ldap3 import BASE
from ldap3.core.exceptions import LDAPInvalidDnError
from ldap3.utils.dn import escape_rdn, parse_dn
from loguru import logger
from utils.errors import EntryProvisioningError, ProvisioningError

ALREADY_EXISTS_CODES = (20, 68)
"""attributeOrValueExists and entryAlreadyExists."""
NO_SUCH_OBJECT = 32
REDACTED = "[REDACTED]"
SENSITIVE_ATTRIBUTES = ("userPassword",)


def write_monitoring_log(
    basic_config: dict[str, Any], run_status: bool, runner: str
) -> None:
    """Write the monitoring log with the run status.

    Parameters
    ----------
    basic_config :
        The basic configuration as per BasicConfig.
    run_status :
        True if the run was a success, False otherwise.
    runner :
        The runner this was called from. This will write a monitoring log file for
        that runner.

    Raises
    ------
    Exception
        Any error should log to STDOUT and exit with failure.
    """
    config: dict[str, Any] = basic_config["config"]
    try:
        Path(f"{runner}_{config['settings']['monitoring_log_file']}").write_text(
            str(run_status)
        )
    except OSError as exc:
        logger.error("Unable to open file:")
        logger.error(exc)
        sys.exit(1)


def container_dn(container: str, base: str) -> str:
    """Join a relative container such as ``ou=people`` onto the base."""
    return f"{container},{base}"


def user_dn(username: str, people: str, base: str) -> str:
    """Build the distinguished name of a user entry.

    Examples
    --------
    >>> user_dn("johnd", "ou=people", "dc=example,dc=com")
    uid=johnd,ou=people,dc=example,dc=com
    """
    return f"uid={escape_rdn(username)},{container_dn(people, base)}"


def group_dn(group_name: str, groups: str, base: str) -> str:
    """Build the distinguished name of a group entry.

    Examples
    --------
    >>> group_dn("crew", "ou=groups", "dc=example,dc=com")
    cn=crew,ou=groups,dc=example,dc=com
    """
    return f"cn={escape_rdn(group_name)},{container_dn(groups, base)}"


def normalize_dn(dn: str) -> str:
    """Normalize a DN so that equivalent spellings compare equal.

    Attribute types and values are lowercased and whitespace around the
    separators is dropped.

    Examples
    --------
    >>> normalize_dn("UID=Bob, OU=People,dc=Example,dc=com")
    uid=bob,ou=people,dc=example,dc=com
    """
    try:
        components = parse_dn(dn)
    except LDAPInvalidDnError:
        return ",".join(
            "=".join(part.strip() for part in component.split("=", 1))
            for component in dn.lower().split(",")
        )
    return ",".join(
        f"{attribute.strip().lower()}={value.strip().lower()}"
        for attribute, value, _ in components
    )


def is_already_exists(result: dict[str, Any] | None) -> bool:
    """Whether an LDAP result reports that the item is already there.

    OpenLDAP reports a duplicate schema element as ``other`` with a
    ``Duplicate`` diagnostic, so the message is checked too.
    """
    if not result:
        return False
    if result.get("result") in ALREADY_EXISTS_CODES:
        return True
    message = str(result.get("message", ""))
    return "Duplicate" in message or "already exists" in message.lower()


def describe_result(result: dict[str, Any] | None) -> str:
    """A short human readable form of an LDAP result."""
    if not result:
        return "no result"
    return (
        f"{result.get('result')} {result.get('description', '')} "
        f"{result.get('message', '')}".strip()
    )


def redact_attributes(attributes: dict[str, Any]) -> dict[str, Any]:
    """Copy of the attributes with credentials replaced, for logging."""
    return {
        key: (REDACTED if key in SENSITIVE_ATTRIBUTES else value)
        for key, value in attributes.items()
    }


def entry_exists(
    connection: Any,
    dn: str,
    search_filter: str = "(objectClass=*)",
    attributes: list[str] | None = None,
    error_class: Type[ProvisioningError] = EntryProvisioningError,
) -> dict[str, Any] | None:
    """Look up a single entry by its DN.

    Parameters
    ----------
    connection :
        A bound, wrapped LDAP connection.
    dn :
        The entry to look up.
    search_filter :
        Filter applied to the entry.
    attributes :
        Attributes to return with the entry.
    error_class :
        Exception raised when the lookup itself fails.

    Returns
    -------
    dict or None
        The search result entry, or None when the entry does not exist.

    Raises
    ------
    ProvisioningError
        The search failed for any reason other than the entry being absent.
    """
    connection.search(dn, search_filter, search_scope=BASE, attributes=attributes)
    result = connection.result
    if result["result"] == NO_SUCH_OBJECT:
        return None
    if result["result"] != 0:
        raise error_class(f"Lookup of {dn} failed: {describe_result(result)}")
    for entry in connection.response or []:
        if entry.get("type") == "searchResEntry":
            return entry
    return None
