"""This module is used to decode the JSONL bulk import file into typed records.

Every line of the file is a JSON object tagged by its ``type`` key. Only the
record types below are of interest, anything else is ignored::

    {"type": "user-attribute", "attribute": {"name": "rank", "type": "text", ...}}
    {"type": "user", "user": {"username": "johnd", "email": "...", ...}}
    {"type": "user-profile", "user": "johnd", "attributes": {"rank": "Captain"}}
    {"type": "user-groups", "group": {"name": "crew", "id": "...", "members": [...]}}
"""
import json
from dataclasses import dataclass, field
from typing import Any
from loguru import logger
from utils.errors import ConfigurationError, ValidationError

MAX_CUSTOM_VALUE_LENGTH = 64
VALUE_TYPES = ("text", "number", "boolean", "select")


@dataclass(frozen=True)
class AttributeDescriptor:
    """A custom attribute declared upstream."""

    name: str
    display_name: str
    value_type: str = "text"
    directory_attribute: str | None = None
    required: bool = False

    @property
    def is_mapped(self) -> bool:
        """True if the attribute takes part in the schema extension."""
        return bool(self.directory_attribute)


@dataclass(frozen=True)
class DirectoryUser:
    """A user entry to provision."""

    username: str
    email: str
    first_name: str
    last_name: str
    credential: str | None = None
    title: str | None = None
    custom_attributes: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class DirectoryGroup:
    """A group and the complete set of usernames that should be its members."""

    name: str
    unique_id: str
    members: frozenset[str] = frozenset()
    mentionable: bool = False


@dataclass
class ImportData:
    """Everything decoded from a single import file."""

    descriptors: list[AttributeDescriptor] = field(default_factory=list)
    users: list[DirectoryUser] = field(default_factory=list)
    groups: list[DirectoryGroup] = field(default_factory=list)


def _string_value(value: Any) -> str:
    """Render a JSON scalar the way the directory expects it.

    Booleans become ``TRUE``/``FALSE`` to satisfy the boolean syntax.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    return str(value)


def validate_custom_value(username: str, field_name: str, value: str) -> None:
    """Reject a custom attribute value longer than the directory allows.

    Parameters
    ----------
    username :
        Owner of the value, used in the error message.
    field_name :
        The attribute the value belongs to.
    value :
        The value to check.

    Raises
    ------
    ValidationError
        The value is longer than ``MAX_CUSTOM_VALUE_LENGTH`` characters.
    """
    if len(value) > MAX_CUSTOM_VALUE_LENGTH:
        raise ValidationError(
            f"Attribute '{field_name}' for user '{username}' exceeds the "
            f"{MAX_CUSTOM_VALUE_LENGTH} character limit (length: {len(value)})"
        )


def validate_user(user: DirectoryUser) -> None:
    """Validate every custom attribute value of a user."""
    for attribute, value in user.custom_attributes.items():
        validate_custom_value(user.username, attribute, value)


def decode_descriptor(raw: dict[str, Any]) -> AttributeDescriptor:
    """Decode a ``user-attribute`` payload.

    Examples
    --------
    >>> decode_descriptor({"name": "rank", "display_name": "Rank", "ldap": "rank"})
    AttributeDescriptor(name='rank', display_name='Rank', value_type='text',
    directory_attribute='rank', required=False)
    """
    name = raw.get("name")
    if not name:
        raise ValidationError(f"Attribute descriptor without a name: {raw}")
    value_type = raw.get("type") or "text"
    if value_type not in VALUE_TYPES:
        raise ValidationError(
            f"Attribute '{name}' has unsupported type '{value_type}', "
            f"expected one of {', '.join(VALUE_TYPES)}"
        )
    return AttributeDescriptor(
        name=name,
        display_name=raw.get("display_name") or name,
        value_type=value_type,
        directory_attribute=raw.get("ldap") or None,
        required=bool(raw.get("required", False)),
    )


def decode_user(
    raw: dict[str, Any],
    profile: dict[str, Any],
    descriptors: list[AttributeDescriptor],
) -> DirectoryUser:
    """Decode a ``user`` payload and attach the mapped profile values.

    Profile values are looked up by descriptor name and stored under the
    descriptor's directory attribute. Empty values are dropped.
    """
    username = raw.get("username")
    if not username:
        raise ValidationError(f"User record without a username: {raw}")
    custom_attributes = {}
    for descriptor in descriptors:
        if not descriptor.is_mapped or descriptor.name not in profile:
            continue
        value = _string_value(profile[descriptor.name])
        if not value:
            continue
        validate_custom_value(username, descriptor.name, value)
        custom_attributes[descriptor.directory_attribute] = value
    return DirectoryUser(
        username=username,
        email=raw.get("email") or "",
        first_name=raw.get("first_name") or "",
        last_name=raw.get("last_name") or "",
        credential=raw.get("password") or None,
        title=raw.get("position") or None,
        custom_attributes=custom_attributes,
    )


def decode_group(raw: dict[str, Any]) -> DirectoryGroup:
    """Decode a ``user-groups`` payload."""
    if not raw.get("name"):
        raise ValidationError(f"Group record without a name: {raw}")
    if not raw.get("id"):
        raise ValidationError(f"Group '{raw['name']}' has no id")
    return DirectoryGroup(
        name=raw["name"],
        unique_id=str(raw["id"]),
        members=frozenset(raw.get("members") or []),
        mentionable=bool(raw.get("allow_reference", False)),
    )


def extract_attribute_descriptors(
    records: list[dict[str, Any]]
) -> list[AttributeDescriptor]:
    """Pull the attribute descriptors out of already parsed records.

    Raises
    ------
    ValidationError
        A descriptor is malformed or two descriptors share a name.
    """
    descriptors: list[AttributeDescriptor] = []
    seen: set[str] = set()
    for record in records:
        if record.get("type") != "user-attribute":
            continue
        descriptor = decode_descriptor(record.get("attribute") or {})
        if descriptor.name in seen:
            raise ValidationError(f"Duplicate attribute descriptor '{descriptor.name}'")
        seen.add(descriptor.name)
        descriptors.append(descriptor)
    return descriptors


def read_records(import_file: str) -> list[dict[str, Any]]:
    """Read every JSON object from a JSONL file.

    Raises
    ------
    ConfigurationError
        The file is missing or cannot be read.
    ValidationError
        A non-empty line is not valid JSON.
    """
    records = []
    try:
        with open(import_file, "r", encoding="utf-8") as stream:
            lines = list(stream)
    except OSError as exc:
        logger.error(f"Unable to read import file {import_file}: {exc}")
        raise ConfigurationError(f"Unable to read {import_file}: {exc}") from exc
    for line_number, line in enumerate(lines, start=1):
        line = line.strip()
        if not line:
            continue
        try:
            records.append(json.loads(line))
        except json.JSONDecodeError as exc:
            raise ValidationError(
                f"{import_file}:{line_number} is not valid JSON: {exc}"
            ) from exc
    return records


def decode_records(records: list[dict[str, Any]]) -> ImportData:
    """Decode parsed records into typed import data."""
    descriptors = extract_attribute_descriptors(records)
    profiles: dict[str, dict[str, Any]] = {}
    for record in records:
        if record.get("type") == "user-profile" and record.get("user"):
            profiles.setdefault(record["user"], {}).update(
                record.get("attributes") or {}
            )
    import_data = ImportData(descriptors=descriptors)
    for record in records:
        record_type = record.get("type")
        if record_type == "user":
            user_record = record.get("user") or {}
            import_data.users.append(
                decode_user(
                    user_record,
                    profiles.get(user_record.get("username", ""), {}),
                    descriptors,
                )
            )
        elif record_type == "user-groups":
            import_data.groups.append(decode_group(record.get("group") or {}))
    logger.debug(
        f"Decoded {len(import_data.descriptors)} attribute descriptors, "
        f"{len(import_data.users)} users and {len(import_data.groups)} groups"
    )
    return import_data


def load_import_file(import_file: str) -> ImportData:
    """Main function of the module."""
    return decode_records(read_records(import_file))
