"""This module is used to set up the argument parser."""
from argparse import ArgumentParser
from dataclasses import dataclass
from typing import Any, Dict

LIVE_OP_TYPES = {
    "setup": "Extend the schema, provision users and groups, migrate auth.",
    "schema": "Only extend the directory schema.",
    "users": "Ensure the directory structure and provision users.",
    "groups": "Synchronize group membership.",
}
OFFLINE_OP_TYPES = {
    "ldif": "Write the full LDIF without touching the directory.",
    "show_schema": "Print the schema extension LDIF.",
}


@dataclass
class ManageArguments:
    """
    The data class for all the arguments.
    """

    config_file: str
    console_log_level: str
    op_type: str
    environment: str
    import_file: str | None = None
    output: str | None = None


class ManageParser:
    """
    This class is used to set up the argument parser.
    """

    @staticmethod
    def _add_environment(parser: ArgumentParser) -> None:
        """Add environment."""
        parser.add_argument(
            "--environment",
            type=str,
            help="Environment to operate in. Default: noop",
            default="noop",
            choices=[
                "noop",
                "prod",
            ],
        )

    @staticmethod
    def _add_config_file(parser: ArgumentParser) -> None:
        """Add main configuration file argument."""
        parser.add_argument(
            "--config_file",
            type=str,
            help="Config file.",
            default="config/config.yaml",
        )

    @staticmethod
    def _add_import_file(parser: ArgumentParser) -> None:
        """Add import file argument."""
        parser.add_argument(
            "--import_file",
            type=str,
            default=None,
            help="JSONL bulk import file. Overrides settings.import_file.",
        )

    @staticmethod
    def _add_output(parser: ArgumentParser) -> None:
        """Add LDIF output file argument."""
        parser.add_argument(
            "--output",
            type=str,
            default=None,
            help="Where to write the LDIF (default: STDOUT).",
        )

    @staticmethod
    def _add_console_log_level(parser: ArgumentParser) -> None:
        """Add console log level argument."""
        parser.add_argument(
            "--console_log_level",
            type=str,
            choices=["error", "warning", "info", "debug"],
            default="info",
            help="Console level configuration (default: %(default)s).",
        )

    def _build_parser(self) -> ArgumentParser:
        """Build the argument parser.

        Returns
        -------
        ArgumentParser object with all relevant arguments.
        """
        parser = ArgumentParser()
        subparsers = parser.add_subparsers(
            title="Operational types", required=True, dest="op_type"
        )
        for op_type, help_text in LIVE_OP_TYPES.items():
            op_parser = subparsers.add_parser(op_type, help=help_text)
            self._add_config_file(op_parser)
            self._add_console_log_level(op_parser)
            self._add_import_file(op_parser)
            self._add_environment(op_parser)
        for op_type, help_text in OFFLINE_OP_TYPES.items():
            op_parser = subparsers.add_parser(op_type, help=help_text)
            self._add_config_file(op_parser)
            self._add_console_log_level(op_parser)
            self._add_import_file(op_parser)
            if op_type == "ldif":
                self._add_output(op_parser)

        return parser

    def parse_cli_args(self) -> ManageArguments:
        """Parse the arguments.

        Returns
        -------
        ManageArguments object with all relevant arguments.
        """
        return self._build_args(vars(self._build_parser().parse_args()))

    @staticmethod
    def _build_args(args: Dict[str, Any]) -> ManageArguments:
        """Build the arguments.

        Offline operations never write to the directory, so they always run
        as ``noop``.

        Returns
        -------
        ManageArguments object with all relevant arguments.
        """
        return ManageArguments(
            config_file=str(args.get("config_file")),
            console_log_level=str(args.get("console_log_level")).upper(),
            op_type=str(args.get("op_type")),
            environment=str(args.get("environment") or "noop"),
            import_file=args.get("import_file"),
            output=args.get("output"),
        )
