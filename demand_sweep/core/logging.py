"""Logging setup for sweep runs: one readable line per record, extras as JSON."""

import json
import logging
import sys

# Keys lifted out of the JSON extras into the line prefix
CONTEXT_KEYS = ("category_id", "snapshot_id")

_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class JSONExtrasFormatter(logging.Formatter):
    """Render ``ts | LEVEL | logger | [category snapshot] message {extras}``.

    The bracketed prefix only appears when a record carries ``category_id`` or
    ``snapshot_id`` so interleaved concurrent sweeps stay readable.
    """

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        extras = {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRS and not k.startswith("_")}
        context = [str(extras.pop(key)) for key in CONTEXT_KEYS if extras.get(key) is not None]

        parts = [self.formatTime(record, self.datefmt), f"{record.levelname:<8}", record.name]
        message = f"[{' '.join(context)}] {record.message}" if context else record.message
        line = " | ".join([*parts, message])

        if extras:
            try:
                line = f"{line} {json.dumps(extras, default=str, ensure_ascii=False, sort_keys=True)}"
            except (TypeError, ValueError):
                line = f"{line} {extras!r}"

        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            line = f"{line}\n{record.exc_text}"
        return line


def setup_logging(*, debug: bool = False) -> None:
    """Send ``demand_sweep`` logs to stdout; safe to call more than once."""
    level = logging.DEBUG if debug else logging.INFO
    logger = logging.getLogger("demand_sweep")
    logger.setLevel(level)
    logger.propagate = False

    # Provider and ORM clients are chatty at INFO
    for name in ("httpx", "httpcore", "sqlalchemy.engine"):
        logging.getLogger(name).setLevel(logging.WARNING)

    if any(isinstance(h.formatter, JSONExtrasFormatter) for h in logger.handlers):
        for handler in logger.handlers:
            handler.setLevel(level)
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JSONExtrasFormatter(datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(handler)
