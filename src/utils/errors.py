"""This module holds the exceptions raised while provisioning the directory."""


class ProvisioningError(Exception):
    """Base class for every error raised by the provisioner."""


class ConfigurationError(ProvisioningError):
    """The configuration file is missing, empty or incomplete."""


class DirectoryConnectionError(ProvisioningError):
    """Connecting or binding to the directory failed."""


class SchemaModificationError(ProvisioningError):
    """The directory rejected a schema modification for a reason other than the
    item already existing."""


class ValidationError(ProvisioningError):
    """The declarative input is invalid.

    Always raised before anything is written to the directory.
    """


class EntryProvisioningError(ProvisioningError):
    """A single user or group could not be provisioned.

    Batches catch this, count it and carry on.
    """


class DownstreamError(ProvisioningError):
    """The downstream application API returned an error."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        """Initialization of the class."""
        super().__init__(message)
        self.status_code = status_code
