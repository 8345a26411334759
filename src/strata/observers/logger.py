# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/strata/observers/logger.py
from __future__ import annotations
import logging
from .events import BaseEvent, DriftDetected, ReadinessChecked
from .interface import FAILURE_EVENTS, event_summary

# chatty per-object events stay in the debug trace
_DEBUG = (DriftDetected, ReadinessChecked)


class LoggerObserver:
    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def notify(self, event: BaseEvent) -> None:
        etype = event.__class__.__name__
        msg = event_summary(event)

        if isinstance(event, FAILURE_EVENTS):
            self.logger.warning("[EVENT] %s: %s", etype, msg)
        elif isinstance(event, _DEBUG):
            self.logger.debug("[EVENT] %s: %s", etype, msg)
        else:
            self.logger.info("[EVENT] %s: %s", etype, msg)
