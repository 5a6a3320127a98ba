"""This module is used to set up and tear down the loguru sinks."""
import re
import sys
from typing import Any, Callable
from loguru import logger

SENSITIVE_KEYS = (
    "userPassword",
    "password",
    "bind_pass",
    "schema_bind_pass",
    "token",
)
_KEYS = "|".join(SENSITIVE_KEYS)
REDACTION_PATTERNS = [
    # 'key': 'value' or 'key': ['value', ...] as printed for dicts
    (
        re.compile(rf"(['\"](?:{_KEYS})['\"]\s*:\s*)(\[[^\]]*\]|'[^']*'|\"[^\"]*\")"),
        r"\1'****'",
    ),
    # key=value
    (re.compile(rf"\b((?:{_KEYS})\s*=\s*)[^\s,}}\]]+"), r"\1****"),
    (
        re.compile(r"(Authorization['\"]?\s*:?\s*['\"]?\s*Bearer\s+)[^\s,'\"}]+"),
        r"\1****",
    ),
]


def redact(message: str) -> str:
    """Scrub credentials out of a log message.

    Examples
    --------
    >>> redact("{'uid': ['johnd'], 'userPassword': ['secret']}")
    {'uid': ['johnd'], 'userPassword': '****'}
    """
    for pattern, replacement in REDACTION_PATTERNS:
        message = pattern.sub(replacement, message)
    return message


def _redacting_format(environment: str) -> Callable[[dict[str, Any]], str]:
    """Build a loguru format function writing the scrubbed message.

    Only the sinks added by ``setup_logging`` use it, so other handlers and
    later runs see records unchanged.
    """
    template = (
        f"{{time}} {environment} {{module}} {{level}} {{extra[redacted]}}\n"
        "{exception}"
    )

    def format_record(record: dict[str, Any]) -> str:
        record["extra"]["redacted"] = redact(record["message"])
        return template

    return format_record


def setup_logging(basic_config: dict[str, Any]) -> list[int]:
    """Replace the default sink with the console and rotating file sinks.

    Parameters
    ----------
    basic_config :
        The basic configuration as per BasicConfig.

    Returns
    -------
    list[int]
        The loguru handler ids, to be passed to ``shutdown_logging``.
    """
    args = basic_config["args"]
    settings: dict[str, Any] = basic_config["config"]["settings"]
    log_format = _redacting_format(args.environment)
    logger.remove()
    handler_ids = [
        logger.add(sys.stderr, format=log_format, level=args.console_log_level)
    ]
    if settings.get("log_file"):
        handler_ids.append(
            logger.add(
                f"{args.op_type}_{settings['log_file']}",
                format=log_format,
                level=settings.get("log_file_level", "INFO"),
                retention=settings.get("log_file_retention"),
                rotation=settings.get("log_file_rotation"),
            )
        )
    return handler_ids


def shutdown_logging(handler_ids: list[int]) -> None:
    """Flush and remove the sinks added by ``setup_logging``."""
    logger.complete()
    for handler_id in handler_ids:
        try:
            logger.remove(handler_id)
        except ValueError:
            pass
