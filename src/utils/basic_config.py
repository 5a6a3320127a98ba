"""This module is used to set up all the basic configuration for later use."""

import os
import yaml
from loguru import logger
from typing import Any
from utils.errors import ConfigurationError
from utils.manage_argument_parser import ManageArguments

ENV_OVERRIDES = {
    "directory.bind_pass": "LDAP_BIND_PASSWORD",
    "directory.schema_bind_pass": "LDAP_SCHEMA_PASSWORD",
    "downstream.token": "DOWNSTREAM_TOKEN",
}
"""Secrets that may be supplied through the environment instead of the file."""

REQUIRED_KEYS = [
    "settings.monitoring_log_file",
    "directory.schema.base",
]
LIVE_REQUIRED_KEYS = [
    "settings.manifest_path",
    "directory.server",
    "directory.port",
    "directory.bind_user",
]
OFFLINE_OPS = ("ldif", "show_schema")
"""Operations that never connect to the directory."""

SCHEMA_DEFAULTS: dict[str, Any] = {
    "people": "ou=people",
    "groups": "ou=groups",
    "schema_dn": "cn={0}core,cn=schema,cn=config",
    "subschema_dn": "cn=Subschema",
    "placeholder_member": "cn=dummy",
}

DOWNSTREAM_DEFAULTS: dict[str, Any] = {
    "enabled": False,
    "verify_ssl": True,
    "timeout": 30,
    "auth_service": "ldap",
    "include_removed_members": False,
    "link_groups": False,
}


def _get_nested(config: dict[str, Any], key_path: str) -> Any:
    """Fetch a value by dotted path, None if any level is missing."""
    current: Any = config
    for key in key_path.split("."):
        if not isinstance(current, dict) or key not in current:
            return None
        current = current[key]
    return current


def _set_nested(config: dict[str, Any], key_path: str, value: Any) -> None:
    """Set a value by dotted path, creating missing levels."""
    keys = key_path.split(".")
    current = config
    for key in keys[:-1]:
        current = current.setdefault(key, {})
    current[keys[-1]] = value


class BasicConfig:
    """
    This class is used to set up all the basic configuration for later use.
    """

    def __init__(self, args: ManageArguments) -> None:
        """Initialization of the class."""
        self.args = args

    def _load_yaml_file(self, yaml_file: str) -> Any:
        """Load the requested YAML file.

        Parameters
        ----------
        yaml_file :
            The path of the file to load.

        Returns
        -------
        Dictionary of the loaded YAML file.

        Raises
        ------
        ConfigurationError
            The file is missing or not valid YAML.
        """
        try:
            with open(yaml_file, "r") as stream:
                return yaml.safe_load(stream)
        except (OSError, yaml.YAMLError) as exc:
            logger.error("Unable to open file:")
            logger.error(exc)
            raise ConfigurationError(f"Unable to load {yaml_file}: {exc}") from exc

    def _load_config_file(self) -> Any:
        """Load the main configuration YAML file.

        Returns
        -------
        Dictionary of the loaded YAML file.
        """
        config = self._load_yaml_file(self.args.config_file)
        if config:
            return config
        else:
            logger.error("Empty config file!!!")
            raise ConfigurationError(f"Empty config file {self.args.config_file}")

    @staticmethod
    def _apply_env_overrides(config: dict[str, Any]) -> None:
        """Apply environment variable overrides for secrets."""
        for key_path, env_var in ENV_OVERRIDES.items():
            env_value = os.getenv(env_var)
            if env_value:
                _set_nested(config, key_path, env_value)
                logger.debug(f"Applied environment override for {key_path}")

    def _apply_defaults(self, config: dict[str, Any]) -> None:
        """Fill in defaults and command line overrides."""
        settings = config.setdefault("settings", {})
        settings.setdefault("reconcile_existing_users", False)
        if getattr(self.args, "import_file", None):
            settings["import_file"] = self.args.import_file
        directory = config.setdefault("directory", {})
        schema = directory.setdefault("schema", {})
        for key, value in SCHEMA_DEFAULTS.items():
            schema.setdefault(key, value)
        schema.setdefault("extension", {})
        group_object = schema.setdefault("objects", {}).setdefault("group", {})
        group_object.setdefault("members", "member")
        schema.setdefault("new_group", {}).setdefault(
            "mask", {"objectClass": ["groupOfNames", "top"], "attributes": {}}
        )
        downstream = config.setdefault("downstream", {})
        for key, value in DOWNSTREAM_DEFAULTS.items():
            downstream.setdefault(key, value)

    def _validate(self, config: dict[str, Any]) -> None:
        """Collect every missing required key and fail once.

        Raises
        ------
        ConfigurationError
            At least one required key is missing.
        """
        required_keys = list(REQUIRED_KEYS)
        live = self.args.op_type not in OFFLINE_OPS
        if live:
            required_keys.extend(LIVE_REQUIRED_KEYS)
        errors = [
            f"Missing required configuration key: {key_path}"
            for key_path in required_keys
            if _get_nested(config, key_path) in (None, "")
        ]
        if not _get_nested(config, "settings.import_file"):
            errors.append("No import file configured (settings.import_file)")
        if live and _get_nested(config, "downstream.enabled"):
            for key_path in ("downstream.url", "downstream.token"):
                if not _get_nested(config, key_path):
                    errors.append(f"Missing required configuration key: {key_path}")
        if errors:
            for error in errors:
                logger.error(error)
            raise ConfigurationError(
                "Configuration validation failed:\n"
                + "\n".join(f"  - {error}" for error in errors)
            )

    def create_basic_config(self) -> dict[str, Any]:
        """Main function of the class."""
        config = self._load_config_file()
        self._apply_env_overrides(config)
        self._apply_defaults(config)
        self._validate(config)
        return {
            "config": config,
            "args": self.args,
        }
