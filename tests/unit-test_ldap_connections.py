# type: ignore
import ssl
import copy
import logging
import yaml
import pytest
from unittest.mock import MagicMock, patch
from ldap3 import Tls
from ldap3.core.exceptions import LDAPSocketOpenError, LDAPSocketCloseError
from _pytest.logging import caplog as _caplog  # noqa
from loguru import logger
from utils.errors import ConfigurationError, DirectoryConnectionError
from utils.ldap_connections import LdapConnections
from utils.ldap_wrapper import LdapWrapper, NoOp

CONFIG_FILE = "tests/data/test_config.yaml"


@pytest.fixture
def caplog(_caplog):  # noqa
    class PropagateHandler(logging.Handler):
        def emit(self, record):
            logging.getLogger(record.name).handle(record)

    handler_id = logger.add(PropagateHandler(), format="{message} {extra}")
    yield _caplog
    logger.remove(handler_id)


class TestLdapConnections:
    @classmethod
    def setup_class(self):
        self.args = MagicMock()
        self.config = yaml.safe_load(open(CONFIG_FILE, "r"))

    def setup_method(self):
        self.args.console_log_level = "INFO"
        self.args.config_file = CONFIG_FILE
        self.args.op_type = "setup"
        self.args.environment = "noop"
        self.basic_config = {"config": copy.deepcopy(self.config), "args": self.args}

    @staticmethod
    def mocked_connection(bound=True):
        connection = MagicMock()
        connection.bind.return_value = bound
        connection.result = {"result": 0 if bound else 49}
        if not bound:
            connection.result["description"] = "invalidCredentials"
        return connection

    def test_tls_disabled(self) -> None:
        assert LdapConnections._create_tls_object(self.basic_config) is None

    def test_tls_enabled(self) -> None:
        self.basic_config["config"]["directory"]["ssl"]["enabled"] = True
        tls = LdapConnections._create_tls_object(self.basic_config)
        assert isinstance(tls, Tls)
        assert tls.validate == ssl.CERT_REQUIRED

    def test_tls_bad_constant(self, caplog) -> None:
        self.basic_config["config"]["directory"]["ssl"]["enabled"] = True
        self.basic_config["config"]["directory"]["ssl"]["validate"] = "CERT_BANANA"
        with caplog.at_level(logging.ERROR):
            with pytest.raises(ConfigurationError):
                LdapConnections._create_tls_object(self.basic_config)
        assert len(caplog.text) > 0

    def test_create_ldap_server_object(self) -> None:
        server = LdapConnections._create_ldap_server_object(self.basic_config, None)
        assert server.host == "ldap.example.com"
        assert server.port == 389
        assert not server.ssl

    def test_credentials_per_role(self) -> None:
        assert LdapConnections._credentials(self.basic_config, "entries") == (
            "cn=admin,dc=example,dc=com",
            "secret",
        )
        assert LdapConnections._credentials(self.basic_config, "schema") == (
            "cn=admin,cn=config",
            "schema-secret",
        )

    def test_schema_credentials_fall_back(self, caplog) -> None:
        del self.basic_config["config"]["directory"]["schema_bind_user"]
        assert LdapConnections._credentials(self.basic_config, "schema") == (
            "cn=admin,dc=example,dc=com",
            "secret",
        )
        assert "No schema_bind_user configured" in caplog.text

    @patch("utils.ldap_connections.Connection")
    def test_bind_noop(self, mocked_connection_class) -> None:
        mocked_connection_class.return_value = self.mocked_connection()
        connection = LdapConnections()._bind_to_ldap(self.basic_config, "entries")
        assert isinstance(connection, NoOp)
        _, kwargs = mocked_connection_class.call_args
        assert kwargs["user"] == "cn=admin,dc=example,dc=com"

    @patch("utils.ldap_connections.Connection")
    def test_bind_prod(self, mocked_connection_class) -> None:
        self.args.environment = "prod"
        mocked_connection_class.return_value = self.mocked_connection()
        connection = LdapConnections()._bind_to_ldap(self.basic_config, "schema")
        assert isinstance(connection, LdapWrapper)
        _, kwargs = mocked_connection_class.call_args
        assert kwargs["user"] == "cn=admin,cn=config"
        assert kwargs["password"] == "schema-secret"

    @patch("utils.ldap_connections.Connection")
    def test_bind_rejected(self, mocked_connection_class, caplog) -> None:
        mocked_connection_class.return_value = self.mocked_connection(bound=False)
        with pytest.raises(DirectoryConnectionError) as exc:
            LdapConnections()._bind_to_ldap(self.basic_config, "entries")
        assert "invalidCredentials" in str(exc.value)

    @patch("utils.ldap_connections.Connection")
    def test_server_unreachable(self, mocked_connection_class, caplog) -> None:
        mocked_connection_class.return_value.bind.side_effect = LDAPSocketOpenError(
            "unable to open socket"
        )
        with caplog.at_level(logging.ERROR):
            with pytest.raises(DirectoryConnectionError):
                LdapConnections()._bind_to_ldap(self.basic_config, "entries")
        assert "Unable to bind as cn=admin,dc=example,dc=com" in caplog.text

    def test_connection_unbinds(self) -> None:
        mocked_obj = MagicMock()
        wrapped = MagicMock()
        mocked_obj._bind_to_ldap.return_value = wrapped
        connection = LdapConnections.connection(mocked_obj, self.basic_config, "schema")
        with connection as conn:
            assert conn is wrapped
        mocked_obj._bind_to_ldap.assert_called_once_with(self.basic_config, "schema")
        wrapped.unbind.assert_called_once()

    def test_connection_unbinds_on_error(self) -> None:
        mocked_obj = MagicMock()
        wrapped = MagicMock()
        mocked_obj._bind_to_ldap.return_value = wrapped
        with pytest.raises(RuntimeError):
            with LdapConnections.connection(mocked_obj, self.basic_config):
                raise RuntimeError("phase failed")
        wrapped.unbind.assert_called_once()

    def test_unbind_failure_is_warning(self, caplog) -> None:
        mocked_obj = MagicMock()
        wrapped = MagicMock()
        wrapped.unbind.side_effect = LDAPSocketCloseError("gone")
        mocked_obj._bind_to_ldap.return_value = wrapped
        with LdapConnections.connection(mocked_obj, self.basic_config):
            pass
        assert "Failed to close the entries connection" in caplog.text
