"""Log output for the docvault client.

The tree service and the API client log with ``extra=`` fields (entity_id,
folder_id, status codes). In JSON mode each record becomes one line with those
fields grouped under ``context``. Records emitted inside a mutation carry its
``mutation_id`` so the optimistic apply, the server call and the resync can be
lined up afterwards.
"""

import contextvars
import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Iterable, Optional

from .config import settings
from ..exceptions import DocVaultException


# Set by DocumentTreeService for the duration of a mutation, read by the formatter.
mutation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("mutation_id", default="")

_RECORD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}


def _record_context(record: logging.LogRecord) -> dict:
    return {key: value for key, value in record.__dict__.items() if key not in _RECORD_ATTRS}


class _JsonFormatter(logging.Formatter):
    """One JSON object per record: event, level, logger, context, error."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        mutation_id = mutation_id_var.get()
        if mutation_id:
            payload["mutation_id"] = mutation_id
        context = _record_context(record)
        if context:
            payload["context"] = context
        if record.exc_info and record.exc_info[1] is not None:
            payload["error"] = self._error(record.exc_info[1])
        return json.dumps(payload, default=str)

    @staticmethod
    def _error(exc: BaseException) -> dict:
        # Our own failures already know their code and details.
        if isinstance(exc, DocVaultException):
            return exc.to_dict()
        return {"error": type(exc).__name__, "message": str(exc)}


_BEARER = re.compile(r'(?i)(bearer\s+)\S+')
_REDACTED = "***"


class _SecretFilter(logging.Filter):
    """Keep the API token out of log output.

    The configured token is masked wherever it appears, as is anything sent
    as an ``Authorization: Bearer`` value. The message is rendered before
    masking so a token passed as a ``%s`` argument is caught too.
    """

    def __init__(self, secrets: Iterable[str] = ()):
        super().__init__()
        self.secrets = [s for s in secrets if s]

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = self.mask(record.getMessage())
        record.args = ()
        for key, value in _record_context(record).items():
            if isinstance(value, str):
                setattr(record, key, self.mask(value))
        return True

    def mask(self, text: str) -> str:
        for secret in self.secrets:
            text = text.replace(secret, _REDACTED)
        return _BEARER.sub(lambda m: m.group(1) + _REDACTED, text)


def setup_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """Send log records to stdout, replacing any handler set up earlier.

    Both arguments fall back to ``settings.log_level`` / ``settings.log_format``.
    """
    level = (log_level or settings.log_level).upper()
    fmt = (log_format or settings.log_format).lower()

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(_SecretFilter([settings.api_token]))
    if fmt == "json":
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s"))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # httpx logs every request at INFO; the client logs failures itself.
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)
