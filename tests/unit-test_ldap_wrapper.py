# type: ignore
import copy
import json
import os
import logging
import yaml
import pytest
from loguru import logger
from unittest.mock import MagicMock
from ldap3 import BASE, Connection, DEREF_ALWAYS, MODIFY_ADD
from _pytest.logging import caplog as _caplog  # noqa
from utils.errors import ConfigurationError
from utils.ldap_wrapper import LdapInterface, LdapWrapper, NoOp

CONFIG_FILE = "tests/data/test_config.yaml"


@pytest.fixture
def caplog(_caplog):  # noqa
    class PropagateHandler(logging.Handler):
        def emit(self, record):
            logging.getLogger(record.name).handle(record)

    handler_id = logger.add(PropagateHandler(), format="{message} {extra}")
    yield _caplog
    logger.remove(handler_id)


class TestLdapInterface:
    @classmethod
    def setup_class(self):
        self.args = MagicMock()
        self.config = yaml.safe_load(open(CONFIG_FILE, "r"))

    def setup_method(self):
        self.args.op_type = "unit-test-users"
        self.args.environment = "noop"
        self.basic_config = {"config": copy.deepcopy(self.config), "args": self.args}
        self.manifest_path = self.config["settings"]["manifest_path"]
        self.ldap_connection = MagicMock()
        self.ldap_connection.result = {"result": 0, "description": "success"}
        self.ldap_connection.response = []

    def teardown_method(self):
        self.remove_file(self.manifest_path)

    @staticmethod
    def remove_file(path):
        try:
            os.remove(path)
        except OSError:
            pass

    def read_manifest(self):
        with open(self.manifest_path, "r") as f:
            return [json.loads(line) for line in f]

    def test_init(self) -> None:
        mocked_obj = MagicMock()
        LdapInterface.__init__(mocked_obj, Connection, self.basic_config)
        assert mocked_obj.manifest_path == self.manifest_path
        assert mocked_obj.ldap_connection == Connection

    def test_add(self) -> None:
        mocked_obj = MagicMock()
        with pytest.raises(NotImplementedError):
            LdapInterface.add(mocked_obj, "some_dn")

    def test_modify(self) -> None:
        mocked_obj = MagicMock()
        with pytest.raises(NotImplementedError):
            LdapInterface.modify(mocked_obj, "some_dn", {})

    def test_unbind_only_when_bound(self) -> None:
        self.ldap_connection.bound = False
        LdapInterface(self.ldap_connection, self.basic_config).unbind()
        self.ldap_connection.unbind.assert_not_called()
        self.ldap_connection.bound = True
        LdapInterface(self.ldap_connection, self.basic_config).unbind()
        self.ldap_connection.unbind.assert_called_once()

    def test_search_passes_everything(self) -> None:
        LdapWrapper(self.ldap_connection, self.basic_config).search(
            "cn=Subschema", "(objectClass=*)", search_scope=BASE, attributes=["cn"]
        )
        self.ldap_connection.search.assert_called_once_with(
            search_base="cn=Subschema",
            search_filter="(objectClass=*)",
            search_scope=BASE,
            dereference_aliases=DEREF_ALWAYS,
            attributes=["cn"],
            size_limit=0,
            time_limit=0,
        )

    def test_wrapper_add_writes_manifest(self) -> None:
        LdapWrapper(self.ldap_connection, self.basic_config).add(
            "uid=bob,ou=people,dc=example,dc=com",
            ["inetOrgPerson"],
            {"uid": "bob", "userPassword": "b0bpass"},
        )
        self.ldap_connection.add.assert_called_once()
        manifest = self.read_manifest()
        assert manifest[0]["add"][0] == "uid=bob,ou=people,dc=example,dc=com"
        assert manifest[0]["add"][2]["userPassword"] == "[REDACTED]"
        assert manifest[0]["result"]["result"] == 0

    def test_wrapper_modify_writes_manifest(self) -> None:
        changes = {"member": [(MODIFY_ADD, ["uid=dave,ou=people,dc=example,dc=com"])]}
        LdapWrapper(self.ldap_connection, self.basic_config).modify(
            "cn=alpha,ou=groups,dc=example,dc=com", changes
        )
        self.ldap_connection.modify.assert_called_once_with(
            "cn=alpha,ou=groups,dc=example,dc=com", changes
        )
        assert self.read_manifest()[0]["modify"][0] == (
            "cn=alpha,ou=groups,dc=example,dc=com"
        )

    def test_manifest_unwritable(self, caplog) -> None:
        self.basic_config["config"]["settings"]["manifest_path"] = "missing/dir/m.jsonl"
        with pytest.raises(ConfigurationError):
            LdapWrapper(self.ldap_connection, self.basic_config).add("cn=x")
        assert len(caplog.text) > 0

    def test_noop_never_writes(self, caplog) -> None:
        noop = NoOp(self.ldap_connection, self.basic_config)
        noop.add("uid=bob,ou=people,dc=example,dc=com", ["inetOrgPerson"], {})
        assert noop.result["result"] == 0
        assert noop.result["type"] == "addResponse"
        noop.modify("cn=alpha,ou=groups,dc=example,dc=com", {})
        assert noop.result["type"] == "modifyResponse"
        self.ldap_connection.add.assert_not_called()
        self.ldap_connection.modify.assert_not_called()
        assert "NOOP: would add uid=bob" in caplog.text
        assert not os.path.exists(self.manifest_path)

    def test_noop_search_reaches_server(self) -> None:
        noop = NoOp(self.ldap_connection, self.basic_config)
        self.ldap_connection.result = {"result": 32}
        self.ldap_connection.response = None
        noop.search("uid=bob,ou=people,dc=example,dc=com", "(objectClass=*)")
        self.ldap_connection.search.assert_called_once()
        assert noop.result == {"result": 32}
