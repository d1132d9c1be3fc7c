"""Shared logging utilities for the raffle backend.

get_logger(name) configures the root logger on first use. Environment:

- LOG_LEVEL: root level (default INFO)
- LOG_FILE: also write to this file when set
- LOG_FORMAT: overrides the record format

web3 and its HTTP stack log every RPC round trip at DEBUG; they are held at
WARNING unless LOG_LEVEL is DEBUG.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
NOISY_LOGGERS = ('web3', 'urllib3', 'asyncio')

_configured = False


def _ensure_configured() -> None:
    global _configured
    if _configured:
        return

    level_name = os.getenv('LOG_LEVEL', 'INFO').upper()
    log_file = os.getenv('LOG_FILE', '')
    level = getattr(logging, level_name, logging.INFO)
    formatter = logging.Formatter(os.getenv('LOG_FORMAT') or DEFAULT_FORMAT)

    root = logging.getLogger()
    root.setLevel(level)

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_file:
        try:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            fh = logging.FileHandler(log_path, encoding='utf-8')
            fh.setLevel(level)
            fh.setFormatter(formatter)
            root.addHandler(fh)
        except OSError:
            root.exception('Cannot open %s for logging; console only', log_file)

    if level > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    _configured = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a logger for ``name``, configuring logging on the first call."""
    _ensure_configured()
    return logging.getLogger(name)
