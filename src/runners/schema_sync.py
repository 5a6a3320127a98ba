"""This module is used to extend the directory schema at runtime."""
import re
from dataclasses import dataclass, field
from typing import Any
from ldap3 import BASE, MODIFY_ADD
from loguru import logger
import utils.utilities as Utilities
from utils.errors import SchemaModificationError, ValidationError
from utils.import_records import AttributeDescriptor
from utils.schema_definitions import (
    AttributeTypeDefinition,
    SchemaConfig,
    UNIQUE_ID_ATTRIBUTE,
    build_object_class,
    derive_attribute_definitions,
    unique_id_definition,
)

NAME_CLAUSE = re.compile(r"NAME\s+(\([^)]*\)|'[^']*')", re.IGNORECASE)
MAY_CLAUSE = re.compile(r"MAY\s+(\([^)]*\)|\S+)", re.IGNORECASE)
QUOTED = re.compile(r"'([^']*)'")
OID_CLAUSE = re.compile(r"^\s*(?:\{\d+\})?\s*\(\s*([0-9.]+)")


@dataclass
class SchemaResult:
    """Outcome of one schema extension run.

    ``created`` and ``skipped`` hold the declared attribute names and the
    auxiliary class name. The reserved ``uniqueID`` attribute is reported on
    its own.
    """

    created: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    unique_id_created: bool = False


def definition_names(definition: str) -> list[str]:
    """All names declared by a schema definition string, lowercased.

    Examples
    --------
    >>> definition_names("( 2.5.4.3 NAME ( 'cn' 'commonName' ) SUP name )")
    ['cn', 'commonname']
    """
    match = NAME_CLAUSE.search(definition)
    if not match:
        return []
    return [name.lower() for name in QUOTED.findall(match.group(1))]


def definition_oid(definition: str) -> str | None:
    """The numeric identifier of a schema definition string.

    An ordering prefix such as ``{3}`` from ``cn=config`` is ignored.
    """
    match = OID_CLAUSE.search(definition)
    return match.group(1) if match else None


def allowed_attributes(definition: str) -> set[str]:
    """The MAY attributes of an object class definition, lowercased."""
    match = MAY_CLAUSE.search(definition)
    if not match:
        return set()
    return {
        name.strip().lower()
        for name in match.group(1).strip("()").split("$")
        if name.strip()
    }


def _as_strings(values: Any) -> list[str]:
    """Schema values may come back as a string, bytes or a list of either."""
    if values is None:
        return []
    if isinstance(values, (str, bytes)):
        values = [values]
    return [
        value.decode("utf-8") if isinstance(value, bytes) else str(value)
        for value in values
    ]


class SchemaExtensionManager:
    """Attribute types and one auxiliary object class are added to the live
    schema from the declared attribute descriptors.

    - Identifiers are derived, never looked up, so they are stable across runs.
    - The live schema is introspected on every call and only missing pieces
      are added.
    - An "already exists" answer counts as success once the name is found in
      the live schema, any other failure aborts.
    - A derived identifier held by another live element aborts before any
      write.

    Parameters
    ----------
    basic_config : dict[str, Any]
        A dictionary containing all the basic configuration settings.
    connection : LdapInterface
        A connection bound with the schema administration credentials.
    log : loguru Logger, optional
        The logger to report through.
    """

    def __init__(
        self, basic_config: dict[str, Any], connection: Any, log: Any = None
    ) -> None:
        """Initialization of the class."""
        self.basic_config = basic_config
        self.connection = connection
        self.log = log or logger.bind(component="schema")
        schema: dict[str, Any] = basic_config["config"]["directory"]["schema"]
        self.schema_dn: str = schema["schema_dn"]
        self.subschema_dn: str = schema["subschema_dn"]
        self.schema_config = SchemaConfig.from_config(schema.get("extension"))

    def _read_subschema(self) -> tuple[list[str], list[str]]:
        """Read the attribute type and object class definitions.

        Returns
        -------
        tuple
            The attribute type definitions and the object class definitions.
            Both are empty when the subschema cannot be read, in which case
            creation is attempted and a duplicate answer is then fatal.
        """
        self.connection.search(
            self.subschema_dn,
            "(objectClass=*)",
            search_scope=BASE,
            attributes=["attributeTypes", "objectClasses"],
        )
        if self.connection.result["result"] != 0:
            self.log.warning(
                f"Unable to read {self.subschema_dn}, attempting to create anyway: "
                f"{Utilities.describe_result(self.connection.result)}"
            )
            return [], []
        attribute_types: list[str] = []
        object_classes: list[str] = []
        for entry in self.connection.response or []:
            if entry.get("type") != "searchResEntry":
                continue
            attributes = {
                key.lower(): value for key, value in entry["attributes"].items()
            }
            attribute_types.extend(_as_strings(attributes.get("attributetypes")))
            object_classes.extend(_as_strings(attributes.get("objectclasses")))
        return attribute_types, object_classes

    @staticmethod
    def _find_definition(definitions: list[str], name: str) -> str | None:
        """Return the definition declaring ``name``, matched case-insensitively."""
        for definition in definitions:
            if name.lower() in definition_names(definition):
                return definition
        return None

    def _is_defined(self, schema_attribute: str, name: str) -> bool:
        """Re-read the subschema and check that ``name`` is really there."""
        attribute_types, object_classes = self._read_subschema()
        if schema_attribute == "olcObjectClasses":
            return self._find_definition(object_classes, name) is not None
        return self._find_definition(attribute_types, name) is not None

    def _check_identifiers(
        self, existing: list[str], planned: list[tuple[str, str]]
    ) -> None:
        """Refuse identifiers the live schema already gives to another name.

        Parameters
        ----------
        existing
            Every live attribute type and object class definition.
        planned
            ``(oid, name)`` of every definition this run may add.

        Raises
        ------
        ValidationError
            A derived identifier belongs to a different schema element.
        """
        owners: dict[str, list[str]] = {}
        for definition in existing:
            oid = definition_oid(definition)
            if oid:
                owners.setdefault(oid, []).extend(definition_names(definition))
        for oid, name in planned:
            if oid in owners and name.lower() not in owners[oid]:
                self.log.error(
                    f"OID {oid} for {name} is already used by "
                    f"{', '.join(owners[oid]) or 'an unnamed element'}"
                )
                raise ValidationError(
                    f"OID {oid} for '{name}' is already used by "
                    f"'{', '.join(owners[oid])}' in the live schema"
                )

    def _apply(self, schema_attribute: str, definition: str, name: str) -> bool:
        """Add one definition to the schema.

        Parameters
        ----------
        schema_attribute : `olcAttributeTypes`, `olcObjectClasses`
            The attribute of the schema entry to add to.
        definition
            The rendered definition.
        name
            The schema element name, for logging.

        Returns
        -------
        bool
            True if created, False if the directory already had it.

        Raises
        ------
        SchemaModificationError
            The directory rejected the definition, or reported a duplicate
            without defining ``name``.
        """
        self.log.debug(f"Adding {schema_attribute}: {definition}")
        self.connection.modify(
            self.schema_dn, {schema_attribute: [(MODIFY_ADD, [definition])]}
        )
        result = self.connection.result
        if result["result"] == 0:
            self.log.info(f"Created schema element {name}")
            return True
        if Utilities.is_already_exists(result) and self._is_defined(
            schema_attribute, name
        ):
            self.log.info(f"{name} appeared since the schema check, skipping")
            return False
        self.log.error(
            f"Failed to add {name} to {self.schema_dn}: "
            f"{Utilities.describe_result(result)}"
        )
        raise SchemaModificationError(
            f"Failed to add {name}: {Utilities.describe_result(result)}"
        )

    def _ensure_attribute_type(
        self, existing: list[str], definition: AttributeTypeDefinition
    ) -> bool:
        """Create the attribute type unless the schema already names it."""
        if self._find_definition(existing, definition.name):
            self.log.debug(f"Attribute {definition.name} already exists, skipping")
            return False
        return self._apply("olcAttributeTypes", definition.render(), definition.name)

    def ensure_schema(self, descriptors: list[AttributeDescriptor]) -> SchemaResult:
        """Main function of the class.

        Parameters
        ----------
        descriptors
            Every declared attribute descriptor. Unmapped ones are ignored.

        Returns
        -------
        SchemaResult
            What was created and what was already present.

        Raises
        ------
        ValidationError
            A derived identifier is already used by another schema element.
        SchemaModificationError
            The directory rejected a definition.

        Examples
        --------
        >>> manager.ensure_schema([AttributeDescriptor("rank", "Rank", "text", "rank")])
        SchemaResult(created=['rank', 'customUserAttributes'], skipped=[],
        unique_id_created=True)
        """
        definitions = derive_attribute_definitions(descriptors, self.schema_config)
        object_class = build_object_class(descriptors, self.schema_config)
        unique_id = unique_id_definition(self.schema_config)
        attribute_types, object_classes = self._read_subschema()
        self._check_identifiers(
            attribute_types + object_classes,
            [(item.oid, item.name) for item in [unique_id, *definitions, object_class]],
        )
        result = SchemaResult()

        result.unique_id_created = self._ensure_attribute_type(
            attribute_types, unique_id
        )
        for definition in definitions:
            if self._ensure_attribute_type(attribute_types, definition):
                result.created.append(definition.name)
            else:
                result.skipped.append(definition.name)

        existing_class = self._find_definition(object_classes, object_class.name)
        if existing_class:
            missing = {
                name.lower() for name in object_class.allowed_attributes
            } - allowed_attributes(existing_class)
            if missing:
                self.log.warning(
                    f"Object class {object_class.name} exists but does not allow: "
                    f"{', '.join(sorted(missing))}"
                )
            self.log.debug(f"Object class {object_class.name} already exists, skipping")
            result.skipped.append(object_class.name)
        elif self._apply("olcObjectClasses", object_class.render(), object_class.name):
            result.created.append(object_class.name)
        else:
            result.skipped.append(object_class.name)

        self.log.info(
            f"Schema extension complete: created {len(result.created)}, "
            f"skipped {len(result.skipped)} (attributes: {len(definitions)}, "
            f"{UNIQUE_ID_ATTRIBUTE} created: {result.unique_id_created})"
        )
        return result
