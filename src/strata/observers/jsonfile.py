# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/strata/observers/jsonfile.py
from __future__ import annotations
import json
from pathlib import Path
from typing import Optional

from .events import BaseEvent
from .interface import event_record


class JsonFileObserver:
    """Append every event as one JSON line, stamped with the instance it belongs to."""

    def __init__(self, path: str | Path, instance: Optional[str] = None):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.instance = instance

    def notify(self, event: BaseEvent) -> None:
        record = event_record(event)
        if self.instance:
            record.setdefault("instance", self.instance)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record, default=str) + "\n")
