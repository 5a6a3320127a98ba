"""This module is used to render the provisioning run as LDIF for review.

Nothing here talks to a directory. The output is a change-record LDIF that
``ldapmodify -a`` can apply: schema modifications first, then the base
entries, users and groups as additions.
"""
import base64
from typing import Any
from loguru import logger
import utils.utilities as Utilities
from utils.import_records import (
    AttributeDescriptor,
    DirectoryGroup,
    DirectoryUser,
    validate_user,
)
from utils.schema_definitions import (
    SchemaConfig,
    UNIQUE_ID_ATTRIBUTE,
    build_object_class,
    derive_attribute_definitions,
    unique_id_definition,
)
from runners.user_sync import (
    DOMAIN_OBJECT_CLASSES,
    OU_OBJECT_CLASSES,
    build_user_attributes,
    rdn_value,
    user_object_classes,
)

BANNER = [
    "# LDAP schema extensions and entries for custom user attributes",
    "# Generated automatically - do not edit manually",
]
UNSAFE_INITIAL_CHARS = (" ", ":", "<")


def ldif_line(attribute: str, value: Any) -> str:
    """Render one ``attribute: value`` line.

    Values that are not RFC 2849 safe strings are base64 encoded.

    Examples
    --------
    >>> ldif_line("cn", "Zoë Smith")
    cn:: Wm/DqyBTbWl0aA==
    """
    value = str(value)
    unsafe = (
        value.startswith(UNSAFE_INITIAL_CHARS)
        or value.endswith(" ")
        or any(char in value for char in "\0\n\r")
        or not value.isascii()
    )
    if unsafe:
        encoded = base64.b64encode(value.encode("utf-8")).decode("ascii")
        return f"{attribute}:: {encoded}"
    return f"{attribute}: {value}"


def _values(value: Any) -> list[Any]:
    """Attribute values as a list."""
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    return [value]


class LdifGenerator:
    """The schema, structure, user and group creation of a live run is
    rendered as static LDIF.

    Always emits full additive records, there is no diffing against a
    directory. Identifiers, syntaxes and the auxiliary class are derived by
    the same functions the live schema manager uses.

    Parameters
    ----------
    basic_config : dict[str, Any]
        A dictionary containing all the basic configuration settings.
    log : loguru Logger, optional
        The logger to report through.
    """

    def __init__(self, basic_config: dict[str, Any], log: Any = None) -> None:
        """Initialization of the class."""
        self.basic_config = basic_config
        self.log = log or logger.bind(component="ldif")
        schema: dict[str, Any] = basic_config["config"]["directory"]["schema"]
        self.schema = schema
        self.base: str = schema["base"]
        self.schema_dn: str = schema["schema_dn"]
        self.schema_config = SchemaConfig.from_config(schema.get("extension"))
        self.default_password: str | None = basic_config["config"]["settings"].get(
            "default_password"
        )

    def _schema_block(
        self, comment: str, schema_attribute: str, definition: str
    ) -> list[str]:
        """One schema modification record."""
        return [
            f"# {comment}",
            f"dn: {self.schema_dn}",
            "changetype: modify",
            f"add: {schema_attribute}",
            ldif_line(schema_attribute, definition),
            "-",
        ]

    @staticmethod
    def _entry_block(
        comment: str, dn: str, object_classes: list[str], attributes: dict[str, Any]
    ) -> list[str]:
        """One entry addition record."""
        lines = [f"# {comment}", ldif_line("dn", dn), "changetype: add"]
        lines.extend(ldif_line("objectClass", value) for value in object_classes)
        for attribute, value in attributes.items():
            lines.extend(ldif_line(attribute, item) for item in _values(value))
        return lines

    @staticmethod
    def _join(blocks: list[list[str]]) -> str:
        """Blocks separated by blank lines, ending in a newline."""
        return "\n\n".join("\n".join(block) for block in blocks) + "\n"

    def schema_blocks(self, descriptors: list[AttributeDescriptor]) -> list[list[str]]:
        """The uniqueID, attribute type and object class records."""
        definitions = derive_attribute_definitions(descriptors, self.schema_config)
        object_class = build_object_class(descriptors, self.schema_config)
        blocks = [
            BANNER,
            self._schema_block(
                f"{UNIQUE_ID_ATTRIBUTE} attribute for groups",
                "olcAttributeTypes",
                unique_id_definition(self.schema_config).render(),
            ),
        ]
        for definition in definitions:
            blocks.append(
                self._schema_block(
                    f"Attribute type: {definition.name}",
                    "olcAttributeTypes",
                    definition.render(),
                )
            )
        blocks.append(
            self._schema_block(
                f"Auxiliary object class: {object_class.name}",
                "olcObjectClasses",
                object_class.render(),
            )
        )
        return blocks

    def build_schema_ldif(self, descriptors: list[AttributeDescriptor]) -> str:
        """Only the schema extension records."""
        return self._join(self.schema_blocks(descriptors))

    def _structure_blocks(self, container: str, comment: str) -> list[str]:
        """A container entry."""
        attribute, value = rdn_value(container)
        return self._entry_block(
            comment,
            Utilities.container_dn(container, self.base),
            OU_OBJECT_CLASSES,
            {attribute: value},
        )

    def _user_block(self, user: DirectoryUser) -> list[str]:
        """A user entry, built exactly as the live provisioner would."""
        attributes = build_user_attributes(user, self.default_password)
        if "userPassword" not in attributes:
            self.log.warning(f"{user.username} has no password in the LDIF")
        return self._entry_block(
            f"User: {user.username}",
            Utilities.user_dn(user.username, self.schema["people"], self.base),
            user_object_classes(user, self.schema_config.object_class_name),
            attributes,
        )

    def _group_block(self, group: DirectoryGroup) -> list[str]:
        """A group entry with its full member list."""
        mask = self.schema["new_group"]["mask"]
        object_classes = list(mask["objectClass"])
        if self.schema_config.object_class_name not in object_classes:
            object_classes.append(self.schema_config.object_class_name)
        placeholder_dn = Utilities.container_dn(
            self.schema["placeholder_member"], self.base
        )
        placeholder_name = rdn_value(self.schema["placeholder_member"])[1].lower()
        members = [
            Utilities.user_dn(username, self.schema["people"], self.base)
            for username in sorted(group.members)
            if username.lower() != placeholder_name
        ]
        attributes = dict(mask.get("attributes") or {})
        attributes["cn"] = group.name
        attributes[UNIQUE_ID_ATTRIBUTE] = group.unique_id
        attributes[self.schema["objects"]["group"]["members"]] = members or [
            placeholder_dn
        ]
        return self._entry_block(
            f"Group: {group.name}",
            Utilities.group_dn(group.name, self.schema["groups"], self.base),
            object_classes,
            attributes,
        )

    def build_ldif(
        self,
        descriptors: list[AttributeDescriptor],
        users: list[DirectoryUser],
        groups: list[DirectoryGroup],
    ) -> str:
        """Main function of the class.

        Raises
        ------
        ValidationError
            A custom attribute value is too long or the descriptors produce
            conflicting identifiers.
        """
        for user in users:
            validate_user(user)
        blocks = self.schema_blocks(descriptors)
        base_attribute, base_value = rdn_value(self.base)
        blocks.append(
            self._entry_block(
                "Base DN",
                self.base,
                DOMAIN_OBJECT_CLASSES,
                {base_attribute: base_value},
            )
        )
        blocks.append(
            self._structure_blocks(
                self.schema["people"], "Organizational unit for people"
            )
        )
        blocks.extend(self._user_block(user) for user in users)
        if groups:
            blocks.append(
                self._structure_blocks(
                    self.schema["groups"], "Organizational unit for groups"
                )
            )
            blocks.extend(self._group_block(group) for group in groups)
        self.log.info(
            f"Generated LDIF for {len(descriptors)} attributes, {len(users)} users "
            f"and {len(groups)} groups"
        )
        return self._join(blocks)
