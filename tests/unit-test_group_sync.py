# type: ignore
import copy
import logging
import yaml
import pytest
from loguru import logger
from ldap3 import MODIFY_DELETE, MODIFY_ADD
from unittest.mock import MagicMock
from _pytest.logging import caplog as _caplog  # noqa
from fake_directory import FakeDirectory
from runners.group_sync import GroupMembershipSync, membership_changes
from utils.errors import ProvisioningError
from utils.import_records import DirectoryGroup

CONFIG_FILE = "tests/data/test_config.yaml"
GROUPS = "ou=groups,dc=example,dc=com"
ALPHA = "cn=alpha,ou=groups,dc=example,dc=com"
PLACEHOLDER = "cn=dummy,dc=example,dc=com"


def member(username):
    return f"uid={username},ou=people,dc=example,dc=com"


@pytest.fixture
def caplog(_caplog):  # noqa
    class PropagateHandler(logging.Handler):
        def emit(self, record):
            logging.getLogger(record.name).handle(record)

    handler_id = logger.add(PropagateHandler(), format="{message} {extra}")
    yield _caplog
    logger.remove(handler_id)


class TestGroupSync:
    @classmethod
    def setup_class(self):
        self.config = yaml.safe_load(open(CONFIG_FILE, "r"))

    def setup_method(self):
        self.basic_config = {"config": copy.deepcopy(self.config), "args": MagicMock()}
        self.directory = FakeDirectory(entries={GROUPS: {"ou": "groups"}})
        self.group_sync = GroupMembershipSync(self.basic_config, self.directory)

    def add_alpha(self, *usernames):
        self.directory.add(
            ALPHA,
            ["groupOfNames", "top", "customUserAttributes"],
            {
                "cn": "alpha",
                "uniqueID": "grp-alpha-0001",
                "member": [member(u) for u in usernames] or [PLACEHOLDER],
            },
        )
        self.directory.calls.clear()

    def test_membership_changes(self) -> None:
        to_add, to_remove = membership_changes(
            [member("bob"), member("carol")],
            [member("carol"), member("dave")],
            PLACEHOLDER,
        )
        assert to_add == [member("dave")]
        assert to_remove == [member("bob")]

    def test_membership_changes_ignores_dn_spelling(self) -> None:
        to_add, to_remove = membership_changes(
            ["UID=Bob, OU=People,dc=example,dc=com"], [member("bob")], PLACEHOLDER
        )
        assert to_add == []
        assert to_remove == []

    def test_membership_changes_keeps_placeholder(self) -> None:
        to_add, to_remove = membership_changes(
            [PLACEHOLDER, member("bob")], [member("bob")], PLACEHOLDER
        )
        assert to_add == []
        assert to_remove == []

    def test_existing_group_converges(self) -> None:
        self.add_alpha("bob", "carol")
        result = self.group_sync.sync_group(
            DirectoryGroup("alpha", "grp-alpha-0001", frozenset({"carol", "dave"}))
        )
        assert result.removed == [member("bob")]
        assert result.added == [member("dave")]
        assert not result.created
        assert self.directory.members(ALPHA) == {member("carol"), member("dave")}

    def test_removals_before_additions(self) -> None:
        self.add_alpha("bob", "carol")
        self.group_sync.sync_group(
            DirectoryGroup("alpha", "grp-alpha-0001", frozenset({"carol", "dave"}))
        )
        modifies = [call for call in self.directory.calls if call[0] == "modify"]
        assert [call[2] for call in modifies] == [
            {"member": [(MODIFY_DELETE, [member("bob")])]},
            {"member": [(MODIFY_ADD, [member("dave")])]},
        ]

    def test_second_run_is_noop(self) -> None:
        self.add_alpha("bob", "carol")
        group = DirectoryGroup("alpha", "grp-alpha-0001", frozenset({"carol", "dave"}))
        self.group_sync.sync_group(group)
        self.directory.calls.clear()
        result = self.group_sync.sync_group(group)
        assert result.added_count == 0
        assert result.removed_count == 0
        assert self.directory.writes() == []

    def test_new_group_created_with_members(self) -> None:
        result = self.group_sync.sync_group(
            DirectoryGroup("gamma", "grp-gamma-0003", frozenset({"eve"}))
        )
        assert result.created
        assert result.added == [member("eve")]
        assert result.removed == []
        add = self.directory.writes()[0]
        assert add[1] == "cn=gamma,ou=groups,dc=example,dc=com"
        assert add[2] == ["groupOfNames", "top", "customUserAttributes"]
        assert add[3] == {
            "cn": "gamma",
            "uniqueID": "grp-gamma-0003",
            "member": [member("eve")],
        }

    def test_new_empty_group_gets_placeholder(self) -> None:
        self.group_sync.sync_group(DirectoryGroup("beta", "grp-beta-0002", frozenset()))
        add = self.directory.writes()[0]
        assert add[3]["member"] == [PLACEHOLDER]

    def test_placeholder_in_input_ignored(self, caplog) -> None:
        result = self.group_sync.sync_group(
            DirectoryGroup("beta", "grp-beta-0002", frozenset({"dummy", "bob"}))
        )
        assert result.added == [member("bob")]
        assert "ignoring placeholder member" in caplog.text

    def test_emptied_group_keeps_placeholder(self) -> None:
        self.add_alpha("bob")
        result = self.group_sync.sync_group(
            DirectoryGroup("alpha", "grp-alpha-0001", frozenset())
        )
        assert result.removed == [member("bob")]
        assert self.directory.members(ALPHA) == {PLACEHOLDER}
        modifies = [call[2] for call in self.directory.calls if call[0] == "modify"]
        assert modifies[0] == {"member": [(MODIFY_ADD, [PLACEHOLDER])]}

    def test_placeholder_not_removed(self) -> None:
        self.add_alpha()
        result = self.group_sync.sync_group(
            DirectoryGroup("alpha", "grp-alpha-0001", frozenset({"bob"}))
        )
        assert result.added == [member("bob")]
        assert result.removed == []
        assert self.directory.members(ALPHA) == {PLACEHOLDER, member("bob")}

    def test_groups_container_created(self) -> None:
        directory = FakeDirectory()
        GroupMembershipSync(self.basic_config, directory).ensure_groups_container()
        add = directory.writes()[0]
        assert add[1:] == (GROUPS, ["organizationalUnit", "top"], {"ou": "groups"})

    def test_groups_container_failure_is_fatal(self) -> None:
        directory = MagicMock()
        directory.result = {"result": 50, "description": "", "message": "denied"}
        with pytest.raises(ProvisioningError):
            GroupMembershipSync(self.basic_config, directory).sync_groups(
                [DirectoryGroup("alpha", "grp-alpha-0001", frozenset())]
            )

    def test_no_groups(self) -> None:
        batch = self.group_sync.sync_groups([])
        assert batch.results == []
        assert self.directory.calls == []

    def test_batch_continues_after_failure(self) -> None:
        original_modify = self.directory.modify

        def modify(dn, changes):
            if dn == ALPHA:
                self.directory.calls.append(("modify", dn, changes))
                self.directory._set(50, "insufficientAccessRights")
                return
            original_modify(dn, changes)

        self.add_alpha("bob")
        self.directory.modify = modify
        batch = self.group_sync.sync_groups(
            [
                DirectoryGroup("alpha", "grp-alpha-0001", frozenset({"carol"})),
                DirectoryGroup("beta", "grp-beta-0002", frozenset({"carol"})),
            ]
        )
        assert batch.failed == ["alpha"]
        assert [result.name for result in batch.results] == ["beta"]
        assert not self.group_sync.run_status
