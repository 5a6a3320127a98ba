"""This module is used to switch downstream identities to directory auth."""
from dataclasses import dataclass, field
from typing import Any
from loguru import logger
from utils.downstream_client import DownstreamClient
from utils.errors import DownstreamError
from utils.import_records import DirectoryGroup


@dataclass
class MigrationResult:
    """Per-user outcome of an auth migration."""

    succeeded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


class AuthMigrationTrigger:
    """Existing downstream identities are pointed at the directory, and the
    downstream application is asked to refresh its view of it.

    Parameters
    ----------
    basic_config : dict[str, Any]
        A dictionary containing all the basic configuration settings.
    client : DownstreamClient
        The downstream API client.
    log : loguru Logger, optional
        The logger to report through.
    """

    def __init__(
        self,
        basic_config: dict[str, Any],
        client: DownstreamClient,
        log: Any = None,
    ) -> None:
        """Initialization of the class."""
        self.basic_config = basic_config
        self.client = client
        self.log = log or logger.bind(component="auth")
        downstream: dict[str, Any] = basic_config["config"]["downstream"]
        self.auth_service: str = downstream.get("auth_service", "ldap")
        self.include_removed_members: bool = bool(
            downstream.get("include_removed_members", False)
        )
        self.group_link_key: str = downstream.get("group_link_key", "unique_id")

    def migrate_to_directory_auth(self, usernames: list[str]) -> MigrationResult:
        """Point every known user at directory authentication.

        Never fatal: users missing downstream are skipped, failures are
        counted and logged.

        Parameters
        ----------
        usernames
            The usernames to migrate. The username is also the correlation key
            stored as the user's auth data.

        Returns
        -------
        MigrationResult
            Usernames grouped by outcome.
        """
        migration = MigrationResult()
        for username in usernames:
            try:
                user = self.client.get_user_by_username(username)
                if user is None:
                    self.log.debug(f"{username} does not exist downstream, skipping")
                    migration.skipped.append(username)
                    continue
                self.client.update_user_auth(user["id"], username, self.auth_service)
            except DownstreamError as exc:
                self.log.warning(f"{username}: auth migration failed: {exc}")
                migration.failed.append(username)
                continue
            self.log.debug(f"{username} now authenticates with {self.auth_service}")
            migration.succeeded.append(username)
        self.log.info(
            f"Auth migration: succeeded {len(migration.succeeded)}, "
            f"failed {len(migration.failed)}, skipped {len(migration.skipped)}"
        )
        return migration

    def link_groups(self, groups: list[DirectoryGroup]) -> int:
        """Link directory groups into the downstream group registry.

        Optional integration: every failure is a warning, never an error.

        Returns
        -------
        int
            How many groups were linked.
        """
        linked = 0
        for group in groups:
            remote_id = group.name if self.group_link_key == "name" else group.unique_id
            try:
                linked_group = self.client.link_ldap_group(remote_id)
            except DownstreamError as exc:
                self.log.warning(f"{group.name}: unable to link group: {exc}")
                continue
            linked += 1
            if group.mentionable and linked_group.get("id"):
                try:
                    self.client.patch_group(
                        linked_group["id"], {"allow_reference": True}
                    )
                except DownstreamError as exc:
                    self.log.warning(
                        f"{group.name}: linked but unable to allow references: {exc}"
                    )
        self.log.info(f"Linked {linked} of {len(groups)} groups downstream")
        return linked

    def trigger_downstream_sync(self) -> None:
        """Ask the downstream application to re-read the directory.

        Raises
        ------
        DownstreamError
            The request failed. The run is not complete without it.
        """
        self.log.info("Requesting a downstream directory sync")
        self.client.sync_ldap(self.include_removed_members)
        self.log.info("Downstream directory sync acknowledged")
