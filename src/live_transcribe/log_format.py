import logging


def _sgr(*codes: int) -> str:
    return "\033[" + ";".join(str(code) for code in codes) + "m"


RESET = _sgr(0)
BOLD = _sgr(1)
DIM = _sgr(2)
RED = _sgr(31)
GREEN = _sgr(32)
YELLOW = _sgr(33)
MAGENTA = _sgr(35)
CYAN = _sgr(36)

LEVEL_STYLES = {
    logging.DEBUG: DIM,
    logging.INFO: GREEN,
    logging.WARNING: YELLOW,
    logging.ERROR: RED,
    logging.CRITICAL: BOLD + RED,
}

# (markers that must all appear in the message, style); first match wins
MESSAGE_HIGHLIGHTS = [
    (("State:", "->"), BOLD + CYAN),
    (("Capability:",), BOLD + MAGENTA),
    (("Recording started",), BOLD + GREEN),
    (("Recording stopped",), BOLD + GREEN),
    (("falling back",), BOLD + YELLOW),
    (("reconnecting",), BOLD + YELLOW),
    (("Server error",), BOLD + RED),
]


def _highlight(message: str) -> str | None:
    for markers, style in MESSAGE_HIGHLIGHTS:
        if all(marker in message for marker in markers):
            return style
    return None


class ColoredFormatter(logging.Formatter):
    """One line per record: time, level, last dotted part of the logger name, message."""

    def format(self, record: logging.LogRecord) -> str:
        level_style = LEVEL_STYLES.get(record.levelno, "")
        message = record.getMessage()

        style = _highlight(message)
        if style is None and record.levelno == logging.DEBUG:
            style = DIM
        elif style is None and record.levelno >= logging.WARNING:
            style = level_style
        if style:
            message = f"{style}{message}{RESET}"

        stamp = self.formatTime(record, self.datefmt)
        source = record.name.rsplit(".", 1)[-1]
        line = f"{DIM}{stamp}{RESET} {level_style}{record.levelname:<5}{RESET} {DIM}{source:<16}{RESET} {message}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line
