import json
import logging
import os
import sys

_DATEFMT = "%Y-%m-%d %H:%M:%S"
_TEXT_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"


class JsonFormatter(logging.Formatter):
    """Single-line JSON formatter for structured log files.

    One JSON object per record with fields ts, level, logger, msg, plus
    "exc" when exception info is attached.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _formatter(fmt: str) -> logging.Formatter:
    if fmt == "json":
        return JsonFormatter(datefmt=_DATEFMT)
    return logging.Formatter(_TEXT_FORMAT, datefmt=_DATEFMT)


def setup_logging(
    mode: str = "cli",
    debug: bool = False,
    log_file: str | None = None,
    log_format: str = "text",
    level: str | None = None,
) -> None:
    """
    Configure logging for the CLI or the MCP server.

    Log records never go to stdout: in MCP mode stdout carries the
    JSON-RPC stream, in CLI mode it carries the sync report.

    Args:
        mode: "mcp" logs to a file only, "cli" logs to stderr (and to
            *log_file* when given).
        debug: Force DEBUG level.
        log_file: Log file path (overrides the LOG_FILE env var).
        log_format: "text" (default) or "json".
        level: Level name from the config file, used when LOG_LEVEL is
            unset.

    Environment variables:
        LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR).
                   Default: WARNING for MCP mode, INFO for CLI mode.
        LOG_FILE: Log file path for MCP mode.
                  Default: /tmp/treesync.log
    """
    default_level = level or ("WARNING" if mode == "mcp" else "INFO")
    env_level = os.getenv("LOG_LEVEL", default_level).upper()
    log_level = logging.DEBUG if debug else getattr(logging, env_level, logging.INFO)

    handlers: list[logging.Handler] = []
    if mode == "mcp":
        target = log_file or os.getenv("LOG_FILE", "/tmp/treesync.log")
        handlers.append(logging.FileHandler(target, mode="a"))
    else:
        handlers.append(logging.StreamHandler(sys.stderr))
        if log_file:
            handlers.append(logging.FileHandler(log_file, mode="a"))

    for handler in handlers:
        handler.setFormatter(_formatter(log_format))

    logging.basicConfig(level=log_level, handlers=handlers)

    # Quiet HTTP internals unless debugging
    if log_level != logging.DEBUG:
        logging.getLogger("urllib3").setLevel(logging.WARNING)
        logging.getLogger("requests").setLevel(logging.WARNING)


def apply_config_level(level: str, debug: bool = False) -> None:
    """Apply the ``logging.level`` from the config file.

    The config file is read after logging is set up, so its level is
    applied to the root logger afterwards.  ``--debug`` and the
    LOG_LEVEL env var both take precedence.
    """
    if debug or os.getenv("LOG_LEVEL"):
        return
    logging.getLogger().setLevel(getattr(logging, level.upper(), logging.INFO))
