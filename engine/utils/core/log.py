import json
import logging
import pathlib
import datetime
import logging.config
from typing import Union
from contextvars import ContextVar
from logging.handlers import RotatingFileHandler


_logger_var: ContextVar[Union[logging.Logger, logging.LoggerAdapter, None]] = ContextVar(
    "run_tool_logger", default=None
)

BASE_LOGGER_NAME = "BOQRecon"
CONFIG_FILE = pathlib.Path(__file__).resolve().parent.parent / "logging_config.json"
CONTEXT_FIELDS = {
    "tool_name": "N/A",
    "run_id": "N/A",
    "request_type": "N/A",
    "user_name": "Anonymous",
}

RED = "\033[31m"
GREEN = "\033[32m"
BLUE = "\033[34m"
ORANGE = "\033[33m"
GREY = "\033[90m"
WHITE = "\033[97m"
PURPLE = "\033[35m"
RESET = "\033[0m"


def set_logger(logger: logging.Logger, **extra):
    _logger_var.set(logging.LoggerAdapter(logger, extra))


def get_logger() -> Union[logging.Logger, logging.LoggerAdapter]:
    """Run-scoped logger for the current context, or the engine base logger."""
    logger = _logger_var.get()
    if logger is None:
        return logging.getLogger(BASE_LOGGER_NAME)
    return logger


class NoDebugFilter(logging.Filter):
    """Filter that blocks DEBUG messages"""

    def filter(self, record):
        return record.levelno > logging.DEBUG


def setup_logging(config_file: pathlib.Path | None = None):
    config_file = config_file or CONFIG_FILE
    with open(config_file) as f_in:
        config = json.load(f_in)

    # Expand ~ for file handlers and make sure their directories exist
    for handler in config.get("handlers", {}).values():
        if "filename" in handler:
            path = pathlib.Path(handler["filename"]).expanduser()
            handler["filename"] = str(path)
            path.parent.mkdir(parents=True, exist_ok=True)

    logging.config.dictConfig(config)
    noisy_libs = [
        "google_genai",
        "google_genai.models",
        "google.genai",
        "httpx",
        "httpcore",
        "hvac",
        "openpyxl",
    ]

    for name in noisy_libs:
        lib_logger = logging.getLogger(name)
        lib_logger.setLevel(logging.ERROR)
        lib_logger.propagate = False

    context_filter = ContextFilter()
    no_debug_filter = NoDebugFilter()
    root_logger = logging.getLogger()
    root_logger.addFilter(context_filter)
    for handler in root_logger.handlers:
        handler.addFilter(context_filter)
        handler.addFilter(no_debug_filter)


class ContextFilter(logging.Filter):
    def filter(self, record):
        current = _logger_var.get()
        if isinstance(current, logging.LoggerAdapter):
            extra = getattr(current, "extra", {}) or {}
            for k in CONTEXT_FIELDS:
                if not hasattr(record, k) and k in extra:
                    setattr(record, k, extra[k])

        for k, default in CONTEXT_FIELDS.items():
            if not hasattr(record, k):
                setattr(record, k, default)
        return True


class RunFileHandlerFilter(logging.Filter):
    """Per-run file keeps DEBUG plus ERROR/CRITICAL."""

    def filter(self, record):
        return record.levelno == logging.DEBUG or record.levelno >= logging.ERROR


def run_logger(run_id: str, tool_name: str, log_dir: str | None = None) -> logging.Logger:
    """Logger writing DEBUG and ERROR records of one reconciliation run to its own file."""
    base = pathlib.Path(log_dir).expanduser() if log_dir else pathlib.Path.home() / "recon_logs"
    run_dir = base / run_id
    run_dir.mkdir(parents=True, exist_ok=True)

    handler = RotatingFileHandler(
        filename=run_dir / f"{tool_name}.log", maxBytes=5_000_000, backupCount=1
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter("%(asctime)s - %(levelname)s - %(message)s"))
    handler.addFilter(RunFileHandlerFilter())

    logger = logging.getLogger(f"{BASE_LOGGER_NAME}.{run_id}.{tool_name}")
    logger.setLevel(logging.DEBUG)

    # Avoid duplicate handlers if this is called multiple times
    for old in list(logger.handlers):
        old.close()
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.propagate = True

    return logger


class DynamicPrefixFormatter(logging.Formatter):
    """
    Color-aware formatter. Pass color=True/False from logging config.
    """

    RUN_W = 20
    PROC_W = 7
    TOOL_W = 9
    FUNC_W = 22
    LEVEL_W = 7

    def __init__(self, color: bool = True):
        super().__init__()
        self.color = bool(color)

    def _c(self, code: str) -> str:
        return code if self.color else ""

    @staticmethod
    def _derive_tool_base(record: logging.LogRecord) -> str:
        tool = (getattr(record, "tool_name", "") or "").lower()
        for marker, label in (
            ("extract", "EXTRACT"),
            ("compare", "COMPARE"),
            ("price", "PRICE"),
            ("parse", "PARSE"),
        ):
            if marker in tool:
                return label
        return "-"

    def format(self, record: logging.LogRecord) -> str:
        is_error_or_warn = record.levelno >= logging.WARNING
        is_error = record.levelno >= logging.ERROR
        process = (getattr(record, "request_type", "N/A") or "N/A")[: self.PROC_W]
        run_id = (getattr(record, "run_id", "N/A") or "N/A")[: self.RUN_W]
        user_name = (getattr(record, "user_name", "Anonymous") or "Anonymous")[:15]
        tool_base = self._derive_tool_base(record)
        func_name = (getattr(record, "tool_name", "N/A") or "N/A")[: self.FUNC_W]
        ts = datetime.datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")

        prefix = "[-]" if is_error_or_warn else "[+]"
        prefix_colored = f"{self._c(RED) if is_error_or_warn else self._c(GREEN)}{prefix}"
        level_color = self._c(RED) if is_error else self._c(PURPLE)
        dash = f"{self._c(RED)} - "

        line = (
            f"{prefix_colored} "
            f"{self._c(WHITE)}{ts} "
            f"{self._c(BLUE)}{run_id:<{self.RUN_W}} "
            f"{self._c(ORANGE)}{user_name:<15} "
            f"{self._c(WHITE)}{process:<{self.PROC_W}}"
            f"{dash}"
            f"{level_color}{record.levelname:<{self.LEVEL_W}}"
            f"{dash}"
            f"{self._c(GREY)}{tool_base:<{self.TOOL_W}}: {func_name:<{self.FUNC_W}} "
            f"{record.getMessage()}"
        )
        if self.color:
            line += RESET

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        if record.stack_info:
            line += "\n" + self.formatStack(record.stack_info)

        return line
