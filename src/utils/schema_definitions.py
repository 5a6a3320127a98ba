"""This module is used to derive schema definitions from attribute descriptors.

Both the live schema manager and the LDIF generator build their definitions
here, so identifiers, syntaxes and the auxiliary class attribute list are the
same on both paths.
"""
import re
from dataclasses import dataclass
from typing import Any
from utils.errors import ValidationError
from utils.import_records import AttributeDescriptor

DEFAULT_BASE_OID = "1.3.6.1.4.1.99999"
UNIQUE_ID_ATTRIBUTE = "uniqueID"
OID_PATTERN = re.compile(r"^\d+(\.\d+)+$")

DIRECTORY_STRING_SYNTAX = "1.3.6.1.4.1.1466.115.121.1.15"
INTEGER_SYNTAX = "1.3.6.1.4.1.1466.115.121.1.27"
BOOLEAN_SYNTAX = "1.3.6.1.4.1.1466.115.121.1.7"

# value type -> (syntax, equality, ordering, substring)
SYNTAX_RULES: dict[str, tuple[str, str, str | None, str | None]] = {
    "text": (
        DIRECTORY_STRING_SYNTAX,
        "caseIgnoreMatch",
        "caseIgnoreOrderingMatch",
        "caseIgnoreSubstringsMatch",
    ),
    "select": (
        DIRECTORY_STRING_SYNTAX,
        "caseIgnoreMatch",
        "caseIgnoreOrderingMatch",
        "caseIgnoreSubstringsMatch",
    ),
    "number": (INTEGER_SYNTAX, "integerMatch", None, None),
    "boolean": (BOOLEAN_SYNTAX, "booleanMatch", None, None),
}


@dataclass(frozen=True)
class SchemaConfig:
    """The numbering scheme every generated identifier is derived from."""

    attribute_prefix: str
    object_class_name: str
    object_class_oid: str
    attribute_oid_start: int
    unique_id_oid: str

    @classmethod
    def from_config(cls, extension: dict[str, Any] | None) -> "SchemaConfig":
        """Build the schema configuration from the ``extension`` config section.

        Parameters
        ----------
        extension :
            ``directory.schema.extension`` from the YAML configuration.

        Returns
        -------
        SchemaConfig
            With defaults filled in for every missing key.

        Raises
        ------
        ValidationError
            Any of the identifiers is not a dotted numeric OID.

        Examples
        --------
        >>> SchemaConfig.from_config({"base_oid": "1.3.6.1.4.1.99999"})
        SchemaConfig(attribute_prefix='1.3.6.1.4.1.99999.2',
        object_class_name='customUserAttributes',
        object_class_oid='1.3.6.1.4.1.99999.1.1', attribute_oid_start=100,
        unique_id_oid='1.3.6.1.4.1.99999.3.1')
        """
        extension = extension or {}
        base_oid = str(extension.get("base_oid", DEFAULT_BASE_OID))
        schema_config = cls(
            attribute_prefix=str(extension.get("attribute_prefix", f"{base_oid}.2")),
            object_class_name=extension.get(
                "object_class_name", "customUserAttributes"
            ),
            object_class_oid=str(
                extension.get("object_class_oid", f"{base_oid}.1.1")
            ),
            attribute_oid_start=int(extension.get("attribute_oid_start", 100)),
            unique_id_oid=str(extension.get("unique_id_oid", f"{base_oid}.3.1")),
        )
        for oid in (
            schema_config.attribute_prefix,
            schema_config.object_class_oid,
            schema_config.unique_id_oid,
        ):
            if not OID_PATTERN.match(oid):
                raise ValidationError(f"'{oid}' is not a valid OID")
        return schema_config


def quote_description(text: str) -> str:
    """Escape a value for use inside a quoted schema description."""
    return text.replace("\\", "\\5C").replace("'", "\\27")


@dataclass(frozen=True)
class AttributeTypeDefinition:
    """A single attribute type definition."""

    oid: str
    name: str
    description: str
    syntax: str
    equality: str
    ordering: str | None = None
    substring: str | None = None
    single_value: bool = True

    def render(self) -> str:
        """Render the definition in RFC 4512 form.

        Examples
        --------
        >>> definition.render()
        "( 1.3.6.1.4.1.99999.2.100 NAME 'rank' DESC 'Custom attribute: Rank'
        EQUALITY caseIgnoreMatch ORDERING caseIgnoreOrderingMatch
        SUBSTR caseIgnoreSubstringsMatch
        SYNTAX 1.3.6.1.4.1.1466.115.121.1.15 SINGLE-VALUE )"
        """
        parts = [
            f"( {self.oid}",
            f"NAME '{self.name}'",
            f"DESC '{quote_description(self.description)}'",
            f"EQUALITY {self.equality}",
        ]
        if self.ordering:
            parts.append(f"ORDERING {self.ordering}")
        if self.substring:
            parts.append(f"SUBSTR {self.substring}")
        parts.append(f"SYNTAX {self.syntax}")
        if self.single_value:
            parts.append("SINGLE-VALUE")
        parts.append(")")
        return " ".join(parts)


@dataclass(frozen=True)
class AuxiliaryObjectClass:
    """The auxiliary object class carrying every custom attribute."""

    oid: str
    name: str
    description: str
    allowed_attributes: tuple[str, ...]

    def render(self) -> str:
        """Render the definition in RFC 4512 form."""
        return (
            f"( {self.oid} NAME '{self.name}' "
            f"DESC '{quote_description(self.description)}' AUXILIARY "
            f"MAY ( {' $ '.join(self.allowed_attributes)} ) )"
        )


def mapped_descriptors(
    descriptors: list[AttributeDescriptor],
) -> list[AttributeDescriptor]:
    """Only the descriptors that map onto a directory attribute."""
    return [descriptor for descriptor in descriptors if descriptor.is_mapped]


def attribute_definition(
    descriptor: AttributeDescriptor, oid: str
) -> AttributeTypeDefinition:
    """Build the attribute type definition for one descriptor."""
    syntax, equality, ordering, substring = SYNTAX_RULES.get(
        descriptor.value_type, SYNTAX_RULES["text"]
    )
    return AttributeTypeDefinition(
        oid=oid,
        name=str(descriptor.directory_attribute),
        description=f"Custom attribute: {descriptor.display_name}",
        syntax=syntax,
        equality=equality,
        ordering=ordering,
        substring=substring,
    )


def derive_attribute_definitions(
    descriptors: list[AttributeDescriptor], schema_config: SchemaConfig
) -> list[AttributeTypeDefinition]:
    """Derive the attribute type definitions for every mapped descriptor.

    The identifier of a descriptor is its position among the mapped
    descriptors added to ``attribute_oid_start``.

    Raises
    ------
    ValidationError
        Two descriptors map to the same directory attribute, a descriptor
        claims the reserved ``uniqueID`` name, or a derived identifier
        collides with a reserved one.
    """
    reserved = {
        schema_config.object_class_oid: schema_config.object_class_name,
        schema_config.unique_id_oid: UNIQUE_ID_ATTRIBUTE,
    }
    definitions = []
    names: set[str] = set()
    for index, descriptor in enumerate(mapped_descriptors(descriptors)):
        name = str(descriptor.directory_attribute)
        if name.lower() == UNIQUE_ID_ATTRIBUTE.lower():
            raise ValidationError(
                f"Attribute '{descriptor.name}' uses the reserved name '{name}'"
            )
        if name.lower() in names:
            raise ValidationError(f"Directory attribute '{name}' is mapped twice")
        names.add(name.lower())
        oid = (
            f"{schema_config.attribute_prefix}."
            f"{schema_config.attribute_oid_start + index}"
        )
        if oid in reserved:
            raise ValidationError(
                f"OID {oid} for '{name}' collides with '{reserved[oid]}'"
            )
        definitions.append(attribute_definition(descriptor, oid))
    return definitions


def unique_id_definition(schema_config: SchemaConfig) -> AttributeTypeDefinition:
    """The reserved attribute used for group identity."""
    return AttributeTypeDefinition(
        oid=schema_config.unique_id_oid,
        name=UNIQUE_ID_ATTRIBUTE,
        description="Unique identifier for groups",
        syntax=DIRECTORY_STRING_SYNTAX,
        equality="caseIgnoreMatch",
    )


def build_object_class(
    descriptors: list[AttributeDescriptor], schema_config: SchemaConfig
) -> AuxiliaryObjectClass:
    """Build the auxiliary class allowing every mapped attribute and ``uniqueID``."""
    allowed = [
        str(descriptor.directory_attribute)
        for descriptor in mapped_descriptors(descriptors)
    ]
    allowed.append(UNIQUE_ID_ATTRIBUTE)
    return AuxiliaryObjectClass(
        oid=schema_config.object_class_oid,
        name=schema_config.object_class_name,
        description="Auxiliary object class for custom user attributes and groups",
        allowed_attributes=tuple(allowed),
    )
