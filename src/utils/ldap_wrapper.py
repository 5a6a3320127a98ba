"""This module wraps ldap3 connections so that writes can be recorded or skipped."""
import copy
import json
from datetime import datetime
from typing import Any
from ldap3 import Connection, SUBTREE, DEREF_ALWAYS
from loguru import logger
from utils.errors import ConfigurationError
from utils.utilities import redact_attributes

SUCCESS_RESULT = {
    "result": 0,
    "description": "success",
    "dn": "",
    "message": "",
    "referrals": None,
}


class LdapInterface:
    """LDAP Interface class.

    Only the operations the provisioner needs are exposed.
    """

    def __init__(
        self, ldap_connection: Connection, basic_config: dict[str, Any]
    ) -> None:
        """Initialization of the class."""
        self.basic_config = basic_config
        self.manifest_path: str = basic_config["config"]["settings"]["manifest_path"]
        self.ldap_connection: Connection = (
            ldap_connection  # This is an active bound connection!
        )

    @property  # pragma: no cover
    def response(self) -> Any:
        """Setting response."""
        return self.ldap_connection.response

    @property  # pragma: no cover
    def result(self) -> Any:
        """Setting result."""
        return self.ldap_connection.result

    @property
    def bound(self) -> bool:
        """Whether the underlying connection is bound."""
        return bool(getattr(self.ldap_connection, "bound", False))

    def unbind(self) -> None:
        """Close the underlying connection."""
        if self.bound:
            self.ldap_connection.unbind()

    def search(
        self,
        search_base: str,
        search_filter: str,
        search_scope: Any = SUBTREE,
        dereference_aliases: Any = DEREF_ALWAYS,
        attributes: Any = None,
        size_limit: int = 0,
        time_limit: int = 0,
    ) -> None:
        """Search the directory. Reads always reach the server."""
        kwargs = copy.copy(locals())
        kwargs.pop("self")
        self.ldap_connection.search(**kwargs)

    def add(
        self,
        dn: str,
        object_class: list[str] | None = None,
        attributes: dict[str, Any] | None = None,
    ) -> None:
        """Add a new entry. The parent entry must already exist."""
        raise NotImplementedError

    def modify(self, dn: str, changes: dict[str, Any]) -> None:
        """Modify an entry, or the schema entry, already in the directory."""
        raise NotImplementedError

    def write_manifest(self, manifest_data: dict[str, Any]) -> None:
        """Append one change record to the manifest.

        Raises
        ------
        ConfigurationError
            The manifest file cannot be written.
        """
        try:
            with open(self.manifest_path, "a") as f:
                f.write(f"{json.dumps(manifest_data, default=str)}\n")
        except OSError as exc:
            logger.error("Unable to open file:")
            logger.error(exc)
            raise ConfigurationError(
                f"Unable to write manifest {self.manifest_path}: {exc}"
            ) from exc


class LdapWrapper(LdapInterface):
    """Sends every change to the server and records it in the manifest."""

    def add(
        self,
        dn: str,
        object_class: list[str] | None = None,
        attributes: dict[str, Any] | None = None,
    ) -> None:
        """Add a new entry. The parent entry must already exist."""
        self.ldap_connection.add(dn, object_class, attributes)
        self.write_manifest(
            {
                "date": str(datetime.now()),
                "add": [dn, object_class, redact_attributes(attributes or {})],
                "result": self.ldap_connection.result,
            }
        )

    def modify(self, dn: str, changes: dict[str, Any]) -> None:
        """Modify an entry, or the schema entry, already in the directory."""
        self.ldap_connection.modify(dn, changes)
        self.write_manifest(
            {
                "date": str(datetime.now()),
                "modify": [dn, redact_attributes(changes)],
                "result": self.ldap_connection.result,
            }
        )


class NoOp(LdapInterface):
    """Reads go to the server, writes are logged and reported as successful."""

    def __init__(
        self, ldap_connection: Connection, basic_config: dict[str, Any]
    ) -> None:
        """Initialization of the class."""
        self._response: Any = getattr(ldap_connection, "response", None)
        self._result: dict[str, Any] | None = getattr(ldap_connection, "result", None)
        super().__init__(ldap_connection, basic_config)

    @property
    def response(self) -> Any:
        """Setting response."""
        return self._response

    @property
    def result(self) -> Any:
        """Setting result."""
        return self._result

    def _succeed(self, response_type: str) -> None:
        """Pretend the last write succeeded."""
        self._response = None
        self._result = dict(SUCCESS_RESULT, type=response_type)

    def search(
        self,
        search_base: str,
        search_filter: str,
        search_scope: Any = SUBTREE,
        dereference_aliases: Any = DEREF_ALWAYS,
        attributes: Any = None,
        size_limit: int = 0,
        time_limit: int = 0,
    ) -> None:
        """Search the directory. Reads always reach the server."""
        kwargs = copy.copy(locals())
        kwargs.pop("self")
        self.ldap_connection.search(**kwargs)
        self._response = self.ldap_connection.response
        self._result = self.ldap_connection.result

    def add(
        self,
        dn: str,
        object_class: list[str] | None = None,
        attributes: dict[str, Any] | None = None,
    ) -> None:
        """Log the entry that would be added."""
        logger.info(f"NOOP: would add {dn} {object_class}")
        logger.debug(f"NOOP: {dn} attributes {redact_attributes(attributes or {})}")
        self._succeed("addResponse")

    def modify(self, dn: str, changes: dict[str, Any]) -> None:
        """Log the modification that would be applied."""
        logger.info(f"NOOP: would modify {dn}: {redact_attributes(changes)}")
        self._succeed("modifyResponse")
