from __future__ import annotations

import logging
import sys
from pathlib import Path

_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


class _ThirdPartyNoiseFilter(logging.Filter):
  """
  Keep tasktracker logs at the configured level, but only let third-party
  loggers (sqlalchemy, uvicorn access, httpx, ...) through at WARNING+.
  """

  def filter(self, record: logging.LogRecord) -> bool:
    if record.name.startswith("tasktracker"):
      return True
    if record.name == "uvicorn.error":
      return record.levelno >= logging.INFO
    return record.levelno >= logging.WARNING


def setup_logging(*, level: str | int = "INFO", log_dir: str | Path | None = None) -> None:
  """
  Configure root logging once, before the first log line.

  Console handler always; a file handler with everything at DEBUG when log_dir is set.
  """
  if isinstance(level, str):
    level = logging.getLevelName(level.upper())
    if not isinstance(level, int):
      level = logging.INFO

  root = logging.getLogger()
  root.setLevel(logging.DEBUG if log_dir else level)

  # Remove any pre-existing handlers to avoid duplicates on reload.
  for h in list(root.handlers):
    root.removeHandler(h)

  fmt = logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT)

  ch = logging.StreamHandler(sys.stderr)
  ch.setLevel(level)
  ch.setFormatter(fmt)
  ch.addFilter(_ThirdPartyNoiseFilter())
  root.addHandler(ch)

  if log_dir:
    path = Path(log_dir)
    path.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(str(path / "tasktracker.log"), encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(fmt)
    root.addHandler(fh)

  logging.captureWarnings(True)
