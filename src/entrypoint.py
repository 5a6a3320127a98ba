"""This is the main entrypoint for the application."""
import sys
from loguru import logger
from ldap3.core.exceptions import LDAPException
import utils.utilities as Utilities
from utils.basic_config import BasicConfig
from utils.errors import ConfigurationError, ProvisioningError
from utils.logging_setup import setup_logging, shutdown_logging
from utils.manage_argument_parser import ManageParser
from runners.provision import ProvisioningRun


def entrypoint() -> None:
    """Simple entrypoint method."""
    args = ManageParser().parse_cli_args()

    try:
        basic_config = BasicConfig(args).create_basic_config()
    except ConfigurationError as exc:
        logger.error(f"Configuration error: {exc}")
        sys.exit(1)
    handler_ids = setup_logging(basic_config)
    run_status = False
    try:
        logger.info(f"Starting {args.op_type} ({args.environment}) ...")
        run_status = ProvisioningRun(basic_config).run()
    except (ProvisioningError, LDAPException) as exc:
        logger.error(f"{args.op_type} aborted: {type(exc).__name__}: {exc}")
        Utilities.write_monitoring_log(basic_config, False, args.op_type)
    finally:
        shutdown_logging(handler_ids)
    if not run_status:
        sys.exit(1)
