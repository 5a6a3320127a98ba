# type: ignore
import copy
import yaml
import pytest
from unittest.mock import MagicMock
from fake_directory import FakeDirectory
from runners.ldif_generator import LdifGenerator, ldif_line
from runners.schema_sync import SchemaExtensionManager
from utils.errors import ValidationError
from utils.import_records import DirectoryUser, load_import_file

CONFIG_FILE = "tests/data/test_config.yaml"
IMPORT_FILE = "tests/data/test_import.jsonl"


class TestLdifGenerator:
    @classmethod
    def setup_class(self):
        self.config = yaml.safe_load(open(CONFIG_FILE, "r"))
        self.import_data = load_import_file(IMPORT_FILE)

    def setup_method(self):
        self.basic_config = {"config": copy.deepcopy(self.config), "args": MagicMock()}
        self.generator = LdifGenerator(self.basic_config)

    def build(self):
        return self.generator.build_ldif(
            self.import_data.descriptors,
            self.import_data.users,
            self.import_data.groups,
        )

    def test_ldif_line(self) -> None:
        assert ldif_line("cn", "Bob Builder") == "cn: Bob Builder"
        assert ldif_line("cn", "Zoë Smith") == "cn:: Wm/DqyBTbWl0aA=="
        assert ldif_line("description", " leading space").startswith("description:: ")
        assert ldif_line("description", ":colon").startswith("description:: ")
        assert ldif_line("description", "two\nlines").startswith("description:: ")
        assert ldif_line("clearanceLevel", 3) == "clearanceLevel: 3"

    def test_schema_matches_live_definitions(self) -> None:
        directory = FakeDirectory()
        SchemaExtensionManager(self.basic_config, directory).ensure_schema(
            self.import_data.descriptors
        )
        ldif = self.generator.build_schema_ldif(self.import_data.descriptors)
        for definition in directory.attribute_types:
            assert f"olcAttributeTypes: {definition}" in ldif
        for definition in directory.object_classes:
            assert f"olcObjectClasses: {definition}" in ldif

    def test_schema_records(self) -> None:
        ldif = self.generator.build_schema_ldif(self.import_data.descriptors)
        assert ldif.startswith("# LDAP schema extensions")
        assert ldif.count("changetype: modify") == 5
        assert ldif.count("dn: cn={0}core,cn=schema,cn=config") == 5
        assert "add: olcObjectClasses" in ldif
        assert "NAME 'notes'" not in ldif
        assert ldif.endswith("-\n")

    def test_records_in_order(self) -> None:
        ldif = self.build()
        positions = [
            ldif.index("olcObjectClasses:"),
            ldif.index("dn: dc=example,dc=com"),
            ldif.index("dn: ou=people,dc=example,dc=com"),
            ldif.index("dn: uid=bob,ou=people,dc=example,dc=com"),
            ldif.index("dn: ou=groups,dc=example,dc=com"),
            ldif.index("dn: cn=alpha,ou=groups,dc=example,dc=com"),
        ]
        assert positions == sorted(positions)

    def test_user_entries(self) -> None:
        ldif = self.build()
        bob = ldif.split("# User: bob\n")[1].split("\n\n")[0]
        assert "objectClass: customUserAttributes" in bob
        assert "rank: Captain" in bob
        assert "clearanceLevel: 3" in bob
        assert "onCall: TRUE" in bob
        assert "userPassword: b0bpass" in bob
        carol = ldif.split("# User: carol\n")[1].split("\n\n")[0]
        assert "customUserAttributes" not in carol
        assert "userPassword" not in carol

    def test_group_entries(self) -> None:
        ldif = self.build()
        alpha = ldif.split("# Group: alpha\n")[1].split("\n\n")[0]
        assert "uniqueID: grp-alpha-0001" in alpha
        assert "member: uid=carol,ou=people,dc=example,dc=com" in alpha
        assert "member: uid=dave,ou=people,dc=example,dc=com" in alpha
        assert "objectClass: groupOfNames" in alpha
        beta = ldif.split("# Group: beta\n")[1].split("\n\n")[0]
        assert "member: cn=dummy,dc=example,dc=com" in beta

    def test_no_groups_no_groups_container(self) -> None:
        ldif = self.generator.build_ldif(
            self.import_data.descriptors, self.import_data.users, []
        )
        assert "ou=groups" not in ldif

    def test_default_password(self) -> None:
        self.basic_config["config"]["settings"]["default_password"] = "changeme"
        generator = LdifGenerator(self.basic_config)
        ldif = generator.build_ldif([], self.import_data.users, [])
        carol = ldif.split("# User: carol\n")[1].split("\n\n")[0]
        assert "userPassword: changeme" in carol

    def test_oversized_value(self) -> None:
        user = DirectoryUser("eve", "", "Eve", "", custom_attributes={"rank": "x" * 65})
        with pytest.raises(ValidationError):
            self.generator.build_ldif(self.import_data.descriptors, [user], [])
