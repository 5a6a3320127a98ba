"""This module is used to provision the directory structure and user entries."""
from dataclasses import dataclass, field
from typing import Any
from ldap3 import MODIFY_ADD, MODIFY_REPLACE
from loguru import logger
import utils.utilities as Utilities
from utils.errors import EntryProvisioningError, ProvisioningError
from utils.import_records import DirectoryUser, validate_user
from utils.schema_definitions import SchemaConfig

PERSON_OBJECT_CLASSES = ["inetOrgPerson", "organizationalPerson", "person", "top"]
OU_OBJECT_CLASSES = ["organizationalUnit", "top"]
DOMAIN_OBJECT_CLASSES = ["domain", "top"]


@dataclass
class UserBatchResult:
    """Counts for one batch of users."""

    created: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


def build_user_attributes(
    user: DirectoryUser, default_password: str | None = None
) -> dict[str, Any]:
    """Build the attributes of a new user entry.

    Shared with the LDIF generator. ``userPassword`` is left out when the user
    has no credential and no default is configured.

    Examples
    --------
    >>> build_user_attributes(DirectoryUser("johnd", "j@x.com", "John", "Doe"))
    {'uid': 'johnd', 'cn': 'John Doe', 'sn': 'Doe', 'givenName': 'John',
    'mail': 'j@x.com'}
    """
    attributes: dict[str, Any] = {
        "uid": user.username,
        "cn": f"{user.first_name} {user.last_name}".strip() or user.username,
        "sn": user.last_name or user.username,
        "givenName": user.first_name,
        "mail": user.email,
    }
    attributes = {key: value for key, value in attributes.items() if value}
    if user.title:
        attributes["title"] = user.title
    credential = user.credential or default_password
    if credential:
        attributes["userPassword"] = credential
    for directory_attribute, value in user.custom_attributes.items():
        if value:
            attributes[directory_attribute] = value
    return attributes


def user_object_classes(user: DirectoryUser, auxiliary_class: str) -> list[str]:
    """Person object classes, plus the auxiliary class for custom attributes."""
    object_classes = list(PERSON_OBJECT_CLASSES)
    if user.custom_attributes:
        object_classes.append(auxiliary_class)
    return object_classes


def rdn_value(container: str) -> tuple[str, str]:
    """Split ``ou=people`` into ``("ou", "people")``."""
    attribute, _, value = container.split(",")[0].partition("=")
    return attribute.strip(), value.strip()


class DirectoryProvisioner:
    """The base containers and user entries are created in the directory.

    - Existing entries are left untouched unless reconciliation is enabled,
      in which case only the custom attributes are brought up to date.
    - Custom attribute values are validated before the directory is touched.
    - A failing user is counted and the batch carries on.

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
    """Set to false when any user failed."""

    def __init__(
        self, basic_config: dict[str, Any], connection: Any, log: Any = None
    ) -> None:
        """Initialization of the class."""
        self.basic_config = basic_config
        self.connection = connection
        self.log = log or logger.bind(component="users")
        self.run_status = True
        settings: dict[str, Any] = basic_config["config"]["settings"]
        schema: dict[str, Any] = basic_config["config"]["directory"]["schema"]
        self.base: str = schema["base"]
        self.people: str = schema["people"]
        self.auxiliary_class = SchemaConfig.from_config(
            schema.get("extension")
        ).object_class_name
        self.default_password: str | None = settings.get("default_password")
        self.reconcile: bool = bool(settings.get("reconcile_existing_users"))

    def _check_result(self, action: str, dn: str) -> None:
        """Raise if the last write failed.

        Raises
        ------
        EntryProvisioningError
            The last operation did not succeed.
        """
        result = self.connection.result
        if result["result"] != 0:
            raise EntryProvisioningError(
                f"Failed to {action} {dn}: {Utilities.describe_result(result)}"
            )

    def _ensure_container(
        self, dn: str, object_classes: list[str], attributes: dict[str, Any]
    ) -> bool:
        """Create a container entry if it is missing.

        Returns
        -------
        bool
            True if the entry was created.

        Raises
        ------
        ProvisioningError
            The lookup or the creation failed. Missing containers leave
            nothing to provision into, so this is fatal.
        """
        if Utilities.entry_exists(self.connection, dn, error_class=ProvisioningError):
            self.log.debug(f"{dn} already exists")
            return False
        self.connection.add(dn, object_classes, attributes)
        if Utilities.is_already_exists(self.connection.result):
            return False
        if self.connection.result["result"] != 0:
            self.log.error(
                f"Failed to create {dn}: "
                f"{Utilities.describe_result(self.connection.result)}"
            )
            raise ProvisioningError(
                f"Failed to create {dn}: "
                f"{Utilities.describe_result(self.connection.result)}"
            )
        self.log.info(f"Created {dn}")
        return True

    def ensure_structure(self) -> None:
        """Make sure the base entry and the people container exist."""
        base_attribute, base_value = rdn_value(self.base)
        self._ensure_container(
            self.base, DOMAIN_OBJECT_CLASSES, {base_attribute: base_value}
        )
        people_attribute, people_value = rdn_value(self.people)
        self._ensure_container(
            Utilities.container_dn(self.people, self.base),
            OU_OBJECT_CLASSES,
            {people_attribute: people_value},
        )

    def _reconcile_user(
        self, user: DirectoryUser, dn: str, entry: dict[str, Any]
    ) -> bool:
        """Bring the custom attributes of an existing entry up to date.

        Returns
        -------
        bool
            True if anything was changed.
        """
        if not user.custom_attributes:
            return False
        current = {
            key.lower(): value for key, value in entry.get("attributes", {}).items()
        }
        object_classes = [
            str(value).lower() for value in current.get("objectclass", [])
        ]
        if self.auxiliary_class.lower() not in object_classes:
            self.connection.modify(
                dn, {"objectClass": [(MODIFY_ADD, [self.auxiliary_class])]}
            )
            if not Utilities.is_already_exists(self.connection.result):
                self._check_result("add the auxiliary class to", dn)
        changes = {}
        for attribute, value in user.custom_attributes.items():
            current_value = current.get(attribute.lower())
            if isinstance(current_value, list):
                current_value = current_value[0] if current_value else None
            if str(current_value) != value:
                changes[attribute] = [(MODIFY_REPLACE, [value])]
        if not changes:
            return False
        self.connection.modify(dn, changes)
        self._check_result("update", dn)
        self.log.info(f"{user.username}: updated {', '.join(sorted(changes))}")
        return True

    def provision_user(self, user: DirectoryUser) -> str:
        """Create a user entry unless it already exists.

        Parameters
        ----------
        user
            The user to provision.

        Returns
        -------
        str : `created`, `skipped`, `updated`
            What happened to the entry.

        Raises
        ------
        ValidationError
            A custom attribute value is too long. Nothing was sent.
        EntryProvisioningError
            The directory rejected the lookup or the write.
        """
        validate_user(user)
        dn = Utilities.user_dn(user.username, self.people, self.base)
        attributes_to_read = None
        if self.reconcile:
            attributes_to_read = ["objectClass", *user.custom_attributes]
        entry = Utilities.entry_exists(
            self.connection, dn, attributes=attributes_to_read
        )
        if entry:
            if self.reconcile and self._reconcile_user(user, dn, entry):
                return "updated"
            self.log.debug(f"{user.username} already exists, skipping")
            return "skipped"
        attributes = build_user_attributes(user, self.default_password)
        if "userPassword" not in attributes:
            self.log.warning(
                f"{user.username} has no password and no default_password is "
                "configured, creating the entry without one"
            )
        object_classes = user_object_classes(user, self.auxiliary_class)
        self.log.debug(
            f"Creating {dn} with {Utilities.redact_attributes(attributes)}"
        )
        self.connection.add(dn, object_classes, attributes)
        if Utilities.is_already_exists(self.connection.result):
            self.log.debug(f"{user.username} appeared since the lookup, skipping")
            return "skipped"
        self._check_result("create", dn)
        self.log.info(f"Created user {user.username}")
        return "created"

    def provision_users(self, users: list[DirectoryUser]) -> UserBatchResult:
        """Main function of the class.

        Every user is validated before the first entry is written, so an
        invalid value never leaves the batch half applied.
        """
        for user in users:
            validate_user(user)
        batch = UserBatchResult()
        for user in users:
            try:
                outcome = self.provision_user(user)
            except EntryProvisioningError as exc:
                self.log.error(f"{user.username}: {exc}")
                batch.failed.append(user.username)
                self.run_status = False
                continue
            getattr(batch, outcome).append(user.username)
        self.log.info(
            f"Users: created {len(batch.created)}, updated {len(batch.updated)}, "
            f"skipped {len(batch.skipped)}, failed {len(batch.failed)}"
        )
        return batch
