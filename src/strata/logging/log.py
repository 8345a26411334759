# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

#src/strata/logging/log.py

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from datetime import datetime, timezone
from typing import Optional
import uuid

LOG_DIR_ENV = "STRATA_LOG_DIR"

# client libraries log every request at DEBUG
_NOISY = ("kubernetes", "urllib3")


def run_log_dir(base_dir: Path | None = None, instance: Optional[str] = None) -> Path:
    """
    Directory a provisioning run logs into.

    ``$STRATA_LOG_DIR`` (or ``~/.strata/logs``) when *base_dir* is not
    given, with one subdirectory per instance so repeated passes against
    the same instance sit together.
    """
    if base_dir is None:
        env = os.environ.get(LOG_DIR_ENV)
        base_dir = Path(env) if env else Path.home() / ".strata" / "logs"
    if instance:
        base_dir = base_dir / re.sub(r"[^A-Za-z0-9_.-]+", "-", instance)
    return base_dir


def init_logging(
    *,
    base_dir: Path | None = None,
    name: str = "strata",
    instance: Optional[str] = None,
    verbose: bool = False,
) -> tuple[logging.Logger, str, Path]:
    """
    Initializes:
      - full trace log file for the run, under the instance's log directory
      - console output (INFO, DEBUG with verbose)
      - returns run_id so observers can reuse it
    """
    run_id = str(uuid.uuid4())

    log_dir = run_log_dir(base_dir, instance)
    log_dir.mkdir(parents=True, exist_ok=True)

    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    log_path = log_dir / f"{name}-{ts}-{run_id}.log"

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()
    logger.propagate = False

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # File = FULL TRACE
    fh = logging.FileHandler(log_path)
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(formatter)

    # Console = INFO by default, DEBUG when --verbose is passed
    ch = logging.StreamHandler()
    ch.setLevel(logging.DEBUG if verbose else logging.INFO)
    ch.setFormatter(formatter)

    logger.addHandler(fh)
    logger.addHandler(ch)

    if not verbose:
        for noisy in _NOISY:
            logging.getLogger(noisy).setLevel(logging.WARNING)

    logger.info("=== Strata provisioning run started ===")
    logger.info("run_id=%s", run_id)
    if instance:
        logger.info("instance=%s", instance)
    logger.info("log_file=%s", log_path)

    return logger, run_id, log_path
