"""This module is used to synchronize group membership into the directory."""
import copy
from dataclasses import dataclass, field
from typing import Any
from ldap3 import MODIFY_ADD, MODIFY_DELETE
from loguru import logger
import utils.utilities as Utilities
from utils.errors import EntryProvisioningError, ProvisioningError, ValidationError
from utils.import_records import DirectoryGroup
from utils.schema_definitions import SchemaConfig, UNIQUE_ID_ATTRIBUTE
from runners.user_sync import OU_OBJECT_CLASSES, rdn_value


@dataclass
class GroupSyncResult:
    """Outcome of synchronizing a single group."""

    name: str
    created: bool = False
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)

    @property
    def added_count(self) -> int:
        """Number of members added."""
        return len(self.added)

    @property
    def removed_count(self) -> int:
        """Number of members removed."""
        return len(self.removed)


@dataclass
class GroupBatchResult:
    """Outcome of synchronizing every declared group."""

    results: list[GroupSyncResult] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


def membership_changes(
    current: list[str], desired: list[str], placeholder: str
) -> tuple[list[str], list[str]]:
    """Work out which member DNs to add and which to remove.

    DNs are compared in normalized form. The placeholder member is never
    removed and never counted as drift.

    Parameters
    ----------
    current
        Member DNs as stored in the directory.
    desired
        Member DNs the group should have.
    placeholder
        DN of the placeholder member.

    Returns
    -------
    tuple
        The DNs to add (from ``desired``) and to remove (from ``current``),
        both sorted.

    Examples
    --------
    >>> membership_changes(
        ["uid=bob,ou=people,dc=x", "uid=carol,ou=people,dc=x"],
        ["uid=carol,ou=people,dc=x", "uid=dave,ou=people,dc=x"],
        "cn=dummy,dc=x",
    )
    (['uid=dave,ou=people,dc=x'], ['uid=bob,ou=people,dc=x'])
    """
    current_map = {Utilities.normalize_dn(dn): dn for dn in current}
    desired_map = {Utilities.normalize_dn(dn): dn for dn in desired}
    placeholder_key = Utilities.normalize_dn(placeholder)
    to_add = [desired_map[key] for key in desired_map.keys() - current_map.keys()]
    to_remove = [
        current_map[key]
        for key in current_map.keys() - desired_map.keys()
        if key != placeholder_key
    ]
    return sorted(to_add), sorted(to_remove)


class GroupMembershipSync:
    """Groups are created or brought to exactly their declared member set.

    - Missing groups are created with the full member list, no diff needed.
    - Existing groups are diffed as sets: removals are applied first, then
      additions, as two separate modifications.
    - The placeholder member keeps ``groupOfNames`` entries valid when empty.

    Parameters
    ----------
    basic_config : dict[str, Any]
        A dictionary containing all the basic configuration settings.
    connection : LdapInterface
        A connection bound with the entry administration credentials.
    log : loguru Logger, optional
        The logger to report through.
    """

    run_status: bool = True
    """Set to false when any group failed."""

    def __init__(
        self, basic_config: dict[str, Any], connection: Any, log: Any = None
    ) -> None:
        """Initialization of the class."""
        self.basic_config = basic_config
        self.connection = connection
        self.log = log or logger.bind(component="groups")
        self.run_status = True
        schema: dict[str, Any] = basic_config["config"]["directory"]["schema"]
        self.base: str = schema["base"]
        self.people: str = schema["people"]
        self.groups: str = schema["groups"]
        self.member_attribute: str = schema["objects"]["group"]["members"]
        self.new_group_mask: dict[str, Any] = schema["new_group"]["mask"]
        self.placeholder_dn = Utilities.container_dn(
            schema["placeholder_member"], self.base
        )
        self.placeholder_name = rdn_value(schema["placeholder_member"])[1]
        self.auxiliary_class = SchemaConfig.from_config(
            schema.get("extension")
        ).object_class_name

    def ensure_groups_container(self) -> None:
        """Create the groups container if it is missing.

        Raises
        ------
        ProvisioningError
            The container could not be looked up or created.
        """
        dn = Utilities.container_dn(self.groups, self.base)
        if Utilities.entry_exists(self.connection, dn, error_class=ProvisioningError):
            self.log.debug(f"{dn} already exists")
            return
        attribute, value = rdn_value(self.groups)
        self.connection.add(dn, OU_OBJECT_CLASSES, {attribute: value})
        result = self.connection.result
        if result["result"] != 0 and not Utilities.is_already_exists(result):
            raise ProvisioningError(
                f"Failed to create {dn}: {Utilities.describe_result(result)}"
            )
        self.log.info(f"Created {dn}")

    def _member_dns(self, group: DirectoryGroup) -> list[str]:
        """Translate the declared usernames into member DNs.

        A declared member that is the placeholder is dropped with a warning.
        """
        member_dns = []
        for username in sorted(group.members):
            if username.lower() == self.placeholder_name.lower():
                self.log.warning(
                    f"{group.name}: ignoring placeholder member '{username}' in input"
                )
                continue
            member_dns.append(Utilities.user_dn(username, self.people, self.base))
        return member_dns

    def _create_group(
        self, group: DirectoryGroup, dn: str, member_dns: list[str]
    ) -> None:
        """Add a new group entry with its full member list."""
        new_group = copy.deepcopy(self.new_group_mask)
        object_classes = list(new_group["objectClass"])
        if self.auxiliary_class not in object_classes:
            object_classes.append(self.auxiliary_class)
        attributes = new_group.get("attributes") or {}
        attributes["cn"] = group.name
        attributes[UNIQUE_ID_ATTRIBUTE] = group.unique_id
        attributes[self.member_attribute] = member_dns or [self.placeholder_dn]
        self.log.info(f"Will create {group.name} with {len(member_dns)} members")
        self.connection.add(dn, object_classes, attributes)
        result = self.connection.result
        if result["result"] != 0:
            raise EntryProvisioningError(
                f"Failed to create group {group.name}: "
                f"{Utilities.describe_result(result)}"
            )

    def _modify_group(
        self, group_name: str, dn: str, action: str, member_dns: list[str]
    ) -> None:
        """Apply one membership modification.

        Parameters
        ----------
        group_name
            Name of the group, for logging.
        dn
            The group DN to act on.
        action : `MODIFY_ADD`, `MODIFY_DELETE`
            https://ldap3.readthedocs.io/en/latest/operations.html
        member_dns
            The member DNs to add or delete.

        Raises
        ------
        EntryProvisioningError
            The directory rejected the modification.
        """
        if not member_dns:
            self.log.debug(f"{group_name}: Has no members to perform {action}")
            return
        self.log.info(f"{group_name}: Will {action}: {member_dns}")
        self.connection.modify(dn, {self.member_attribute: [(action, member_dns)]})
        result = self.connection.result
        if result["result"] != 0:
            raise EntryProvisioningError(
                f"{group_name}: Failed to execute {action}: "
                f"{Utilities.describe_result(result)}"
            )

    def sync_group(self, group: DirectoryGroup) -> GroupSyncResult:
        """Make the directory group match the declared member set.

        Parameters
        ----------
        group
            The declared group.

        Returns
        -------
        GroupSyncResult
            The member DNs added and removed.

        Raises
        ------
        EntryProvisioningError
            A lookup or modification failed.
        """
        if not group.name or not group.unique_id:
            raise ValidationError(f"Group needs a name and an id: {group}")
        dn = Utilities.group_dn(group.name, self.groups, self.base)
        member_dns = self._member_dns(group)
        sync_result = GroupSyncResult(name=group.name)
        entry = Utilities.entry_exists(
            self.connection, dn, attributes=[self.member_attribute]
        )
        if entry is None:
            self._create_group(group, dn, member_dns)
            sync_result.created = True
            sync_result.added = list(member_dns)
            return sync_result

        current = entry.get("attributes", {}).get(self.member_attribute) or []
        if isinstance(current, str):
            current = [current]
        to_add, to_remove = membership_changes(current, member_dns, self.placeholder_dn)
        placeholder_present = Utilities.normalize_dn(self.placeholder_dn) in {
            Utilities.normalize_dn(member) for member in current
        }
        if not member_dns and to_remove and not placeholder_present:
            # an emptied groupOfNames still needs one member
            self._modify_group(group.name, dn, MODIFY_ADD, [self.placeholder_dn])
        self._modify_group(group.name, dn, MODIFY_DELETE, to_remove)
        self._modify_group(group.name, dn, MODIFY_ADD, to_add)
        sync_result.added = to_add
        sync_result.removed = to_remove
        self.log.info(
            f"{group.name}: added {sync_result.added_count}, "
            f"removed {sync_result.removed_count}"
        )
        return sync_result

    def sync_groups(self, groups: list[DirectoryGroup]) -> GroupBatchResult:
        """Main function of the class."""
        batch = GroupBatchResult()
        if not groups:
            self.log.info("No groups declared, skipping group synchronization")
            return batch
        self.ensure_groups_container()
        for group in groups:
            try:
                batch.results.append(self.sync_group(group))
            except EntryProvisioningError as exc:
                self.log.error(f"{group.name}: {exc}")
                batch.failed.append(group.name)
                self.run_status = False
        self.log.info(
            f"Groups: synchronized {len(batch.results)}, failed {len(batch.failed)}"
        )
        return batch
