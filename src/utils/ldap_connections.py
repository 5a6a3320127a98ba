"""This module is used to set up the LDAP connections.

Two credential sets are used: the entry administration bind for structure,
users and groups, and the schema administration bind for ``cn=config``.
Every phase opens its own connection and unbinds it when the phase ends.
"""
import ssl
from contextlib import contextmanager
from typing import Any, Iterator
from ldap3 import Server, Connection, Tls, core
from ldap3.core.exceptions import LDAPException
from loguru import logger
from utils.errors import ConfigurationError, DirectoryConnectionError
from utils.ldap_wrapper import LdapInterface, NoOp, LdapWrapper

CONNECTION_WRAPPER_REFERENCE = {"noop": NoOp, "prod": LdapWrapper}
BIND_CREDENTIALS = {
    "entries": ("bind_user", "bind_pass"),
    "schema": ("schema_bind_user", "schema_bind_pass"),
}


class LdapConnections:
    """This class is used to set up the LDAP connections."""

    @staticmethod
    def _create_tls_object(basic_config: dict[str, Any]) -> core.tls.Tls | None:
        """Create the TLS object.

        Parameters
        ----------
        basic_config :
            The basic configuration as per BasicConfig.

        Returns
        -------
        TLS object or None if SSL is disabled.
            https://ldap3.readthedocs.io/en/latest/ssltls.html

        Raises
        ------
        ConfigurationError
            The SSL settings do not name valid ``ssl`` module constants.
        """
        ssl_config: dict[str, Any] = basic_config["config"]["directory"].get(
            "ssl", {}
        )
        if not ssl_config.get("enabled"):
            return None
        try:
            return Tls(
                validate=getattr(ssl, ssl_config["validate"]),
                version=getattr(ssl, ssl_config["version"]),
                ciphers="ALL",
                ca_certs_file=ssl_config.get("ca_certs_file", None),
            )
        except (AttributeError, KeyError, LDAPException) as exc:
            logger.error("Unable to create TLS object:")
            logger.error(exc)
            raise ConfigurationError(f"Invalid SSL configuration: {exc}") from exc

    @staticmethod
    def _create_ldap_server_object(
        basic_config: dict[str, Any],
        tls_configuration: core.tls.Tls | None,
    ) -> core.server.Server:
        """Create the LDAP server object.

        Parameters
        ----------
        basic_config :
            The basic configuration as per BasicConfig
        tls_configuration :
            https://ldap3.readthedocs.io/en/latest/ssltls.html

        Returns
        -------
        Server object
            https://ldap3.readthedocs.io/en/latest/server.html
        """
        server_config: dict[str, Any] = basic_config["config"]["directory"]
        try:
            return Server(
                server_config["server"],
                port=server_config["port"],
                use_ssl=server_config.get("ssl", {}).get("enabled", False),
                tls=tls_configuration,
                get_info=server_config.get("get_info", "NO_INFO"),
            )
        except LDAPException as exc:
            logger.error("Unable to create LDAP server object:")
            logger.error(exc)
            raise DirectoryConnectionError(
                f"Invalid server {server_config['server']}: {exc}"
            ) from exc

    @staticmethod
    def _credentials(basic_config: dict[str, Any], role: str) -> tuple[str, str]:
        """Pick the bind credentials for the role.

        The schema role falls back to the entry administration bind when no
        dedicated schema credentials are configured.
        """
        server_config: dict[str, Any] = basic_config["config"]["directory"]
        user_key, pass_key = BIND_CREDENTIALS[role]
        if role == "schema" and not server_config.get(user_key):
            logger.warning(
                "No schema_bind_user configured, using bind_user for schema changes"
            )
            user_key, pass_key = BIND_CREDENTIALS["entries"]
        return server_config[user_key], server_config.get(pass_key, "")

    def _bind_to_ldap(self, basic_config: dict[str, Any], role: str) -> LdapInterface:
        """Bind to the directory with the credentials of the role.

        Parameters
        ----------
        basic_config :
            The basic configuration as per BasicConfig
        role : `entries`, `schema`
            Which credential set to bind with.

        Returns
        -------
        LdapInterface
            The bound connection wrapped for the configured environment.

        Raises
        ------
        DirectoryConnectionError
            The server is unreachable or rejected the credentials.
        """
        tls_object = self._create_tls_object(basic_config)
        ldap_server_object = self._create_ldap_server_object(basic_config, tls_object)
        bind_user, bind_pass = self._credentials(basic_config, role)
        try:
            connection = Connection(
                ldap_server_object, user=bind_user, password=bind_pass
            )
            bound = connection.bind()
        except LDAPException as exc:
            logger.error(f"Unable to bind as {bind_user}:")
            logger.error(exc)
            raise DirectoryConnectionError(
                f"Unable to connect to {basic_config['config']['directory']['server']}"
                f" as {bind_user}: {exc}"
            ) from exc
        if not bound:
            logger.error(f"Bind as {bind_user} failed: {connection.result}")
            raise DirectoryConnectionError(
                f"Bind as {bind_user} failed: {connection.result.get('description')}"
            )
        logger.debug(f"Bound to the directory as {bind_user} ({role})")
        return CONNECTION_WRAPPER_REFERENCE[basic_config["args"].environment](
            connection, basic_config
        )

    @contextmanager
    def connection(
        self, basic_config: dict[str, Any], role: str = "entries"
    ) -> Iterator[LdapInterface]:
        """Main function of the class.

        A bound connection that is unbound when the block exits, error or not.

        Examples
        --------
        >>> with LdapConnections().connection(basic_config, "schema") as conn:
        ...     conn.search("cn=Subschema", "(objectClass=*)")
        """
        ldap_connection = self._bind_to_ldap(basic_config, role)
        try:
            yield ldap_connection
        finally:
            try:
                ldap_connection.unbind()
            except LDAPException as exc:
                logger.warning(f"Failed to close the {role} connection: {exc}")
