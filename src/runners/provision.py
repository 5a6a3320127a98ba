"""This module drives a complete provisioning run, phase by phase."""
import sys
import uuid
from dataclasses import dataclass, field
from typing import Any
from loguru import logger
import utils.utilities as Utilities
from utils.downstream_client import DownstreamClient
from utils.import_records import ImportData, load_import_file, validate_user
from utils.ldap_connections import LdapConnections
from utils.schema_definitions import SchemaConfig, derive_attribute_definitions
from runners.auth_migration import AuthMigrationTrigger, MigrationResult
from runners.group_sync import GroupBatchResult, GroupMembershipSync
from runners.ldif_generator import LdifGenerator
from runners.schema_sync import SchemaExtensionManager, SchemaResult
from runners.user_sync import DirectoryProvisioner, UserBatchResult


@dataclass
class RunSummary:
    """Everything a run did, reported at the end."""

    schema: SchemaResult | None = None
    users: UserBatchResult | None = None
    groups: GroupBatchResult | None = None
    migration: MigrationResult | None = None
    linked_groups: int = 0
    downstream_synced: bool = False
    notes: list[str] = field(default_factory=list)


class ProvisioningRun:
    """One run of the pipeline: schema, structure and users, groups, then the
    downstream auth migration and refresh.

    - All input is decoded and validated before the first directory call.
    - Each phase opens its own connection and closes it on exit.
    - Fatal errors propagate and abort the remaining phases. Per-user and
      per-group failures only flip the run status.

    Parameters
    ----------
    basic_config : dict[str, Any]
        A dictionary containing all the basic configuration settings.
    ldap_connections : LdapConnections, optional
        Factory for the phase connections.
    client : DownstreamClient, optional
        The downstream API client, built from configuration when omitted.
    """

    run_status: bool = True
    """The overall run status. Set to false anytime something goes wrong."""

    def __init__(
        self,
        basic_config: dict[str, Any],
        ldap_connections: LdapConnections | None = None,
        client: DownstreamClient | None = None,
    ) -> None:
        """Initialization of the class."""
        self.basic_config = basic_config
        self.ldap_connections = ldap_connections or LdapConnections()
        self.client = client
        self.run_status = True
        self.summary = RunSummary()
        self.log = logger.bind(run_id=uuid.uuid4().hex[:8], component="provision")

    def _load_input(self) -> ImportData:
        """Decode the import file and validate everything up front.

        Raises
        ------
        ValidationError
            Anything in the input that would fail later.
        """
        import_file = self.basic_config["config"]["settings"]["import_file"]
        self.log.info(f"Loading {import_file}")
        import_data = load_import_file(import_file)
        for user in import_data.users:
            validate_user(user)
        extension = self.basic_config["config"]["directory"]["schema"].get("extension")
        derive_attribute_definitions(
            import_data.descriptors, SchemaConfig.from_config(extension)
        )
        self.log.info(
            f"Loaded {len(import_data.descriptors)} attribute descriptors, "
            f"{len(import_data.users)} users and {len(import_data.groups)} groups"
        )
        return import_data

    def _downstream_enabled(self) -> bool:
        """Whether the downstream application is configured."""
        return bool(self.basic_config["config"]["downstream"].get("enabled"))

    def _downstream_client(self) -> DownstreamClient:
        """Create the downstream client on first use."""
        if self.client is None:
            self.client = DownstreamClient(self.basic_config["config"]["downstream"])
        return self.client

    def run_schema(self, import_data: ImportData) -> SchemaResult:
        """Schema phase, on the schema administration connection."""
        self.log.info("Extending the directory schema ...")
        with self.ldap_connections.connection(self.basic_config, "schema") as conn:
            self.summary.schema = SchemaExtensionManager(
                self.basic_config, conn, self.log.bind(component="schema")
            ).ensure_schema(import_data.descriptors)
        return self.summary.schema

    def run_users(self, import_data: ImportData) -> UserBatchResult:
        """Structure and user phase."""
        self.log.info("Provisioning the directory structure and users ...")
        with self.ldap_connections.connection(self.basic_config, "entries") as conn:
            provisioner = DirectoryProvisioner(
                self.basic_config, conn, self.log.bind(component="users")
            )
            provisioner.ensure_structure()
            self.summary.users = provisioner.provision_users(import_data.users)
        if not provisioner.run_status:
            self.run_status = False
        return self.summary.users

    def run_groups(self, import_data: ImportData) -> GroupBatchResult:
        """Group phase, on a fresh entry administration connection."""
        self.log.info("Synchronizing groups ...")
        with self.ldap_connections.connection(self.basic_config, "entries") as conn:
            synchronizer = GroupMembershipSync(
                self.basic_config, conn, self.log.bind(component="groups")
            )
            self.summary.groups = synchronizer.sync_groups(import_data.groups)
        if not synchronizer.run_status:
            self.run_status = False
        return self.summary.groups

    def run_downstream(self, import_data: ImportData) -> None:
        """Auth migration, optional group linking and the refresh request.

        Raises
        ------
        DownstreamError
            The refresh request failed.
        """
        if not self._downstream_enabled():
            self.log.info("Downstream integration disabled, skipping auth migration")
            self.summary.notes.append("downstream disabled")
            return
        if self.basic_config["args"].environment != "prod":
            self.log.info("NOOP: skipping auth migration and downstream sync")
            self.summary.notes.append("downstream skipped in noop")
            return
        trigger = AuthMigrationTrigger(
            self.basic_config,
            self._downstream_client(),
            self.log.bind(component="auth"),
        )
        self.summary.migration = trigger.migrate_to_directory_auth(
            [user.username for user in import_data.users]
        )
        if self.summary.migration.failed:
            self.run_status = False
        if (
            self.basic_config["config"]["downstream"].get("link_groups")
            and import_data.groups
        ):
            self.summary.linked_groups = trigger.link_groups(import_data.groups)
        trigger.trigger_downstream_sync()
        self.summary.downstream_synced = True

    def run_setup(self, import_data: ImportData) -> None:
        """The complete pipeline."""
        self.run_schema(import_data)
        self.run_users(import_data)
        self.run_groups(import_data)
        self.run_downstream(import_data)

    def _write_output(self, content: str) -> None:
        """Write LDIF to the requested file or STDOUT."""
        output = getattr(self.basic_config["args"], "output", None)
        if output:
            with open(output, "w", encoding="utf-8") as f:
                f.write(content)
            self.log.info(f"LDIF written to {output}")
        else:
            sys.stdout.write(content)

    def run_ldif(self, import_data: ImportData) -> None:
        """Render the whole run as LDIF."""
        generator = LdifGenerator(self.basic_config, self.log.bind(component="ldif"))
        self._write_output(
            generator.build_ldif(
                import_data.descriptors, import_data.users, import_data.groups
            )
        )

    def run_show_schema(self, import_data: ImportData) -> None:
        """Print the schema extension LDIF and a short summary."""
        mapped = [d for d in import_data.descriptors if d.is_mapped]
        if not mapped:
            self.log.info("No custom attributes mapped to directory attributes")
        generator = LdifGenerator(self.basic_config, self.log.bind(component="ldif"))
        schema_config = generator.schema_config
        self.log.info(
            f"Schema extension: {len(mapped)} attributes, object class "
            f"{schema_config.object_class_name} ({schema_config.object_class_oid}), "
            f"attribute prefix {schema_config.attribute_prefix}"
        )
        self._write_output(generator.build_schema_ldif(import_data.descriptors))

    def _log_summary(self) -> None:
        """Log the created, skipped and failed counts of every phase."""
        if self.summary.schema:
            self.log.info(
                f"Schema: created {self.summary.schema.created or 'nothing'}, "
                f"skipped {self.summary.schema.skipped or 'nothing'}"
            )
        if self.summary.users:
            self.log.info(
                f"Users: {len(self.summary.users.created)} created, "
                f"{len(self.summary.users.updated)} updated, "
                f"{len(self.summary.users.skipped)} skipped, "
                f"{len(self.summary.users.failed)} failed"
            )
        if self.summary.groups:
            self.log.info(
                f"Groups: {len(self.summary.groups.results)} synchronized, "
                f"{len(self.summary.groups.failed)} failed"
            )
        if self.summary.migration:
            self.log.info(
                f"Auth migration: {len(self.summary.migration.succeeded)} succeeded, "
                f"{len(self.summary.migration.failed)} failed, "
                f"{len(self.summary.migration.skipped)} skipped"
            )

    def run(self) -> bool:
        """Main function of the class.

        Returns
        -------
        bool
            The run status, also written to the monitoring log.
        """
        op_type = self.basic_config["args"].op_type
        operations = {
            "setup": self.run_setup,
            "schema": self.run_schema,
            "users": self.run_users,
            "groups": self.run_groups,
            "ldif": self.run_ldif,
            "show_schema": self.run_show_schema,
        }
        import_data = self._load_input()
        try:
            operations[op_type](import_data)
        finally:
            if self.client is not None:
                self.client.close()
        self._log_summary()
        if self.run_status:
            self.log.info(f"{op_type} completed successfully")
        else:
            self.log.warning(f"{op_type} completed with failures")
        Utilities.write_monitoring_log(self.basic_config, self.run_status, op_type)
        return self.run_status
