# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/strata/observers/console.py
import typer

from .events import BaseEvent
from .interface import FAILURE_EVENTS, event_summary


class ConsoleObserver:
    def notify(self, event: BaseEvent) -> None:
        k = event.__class__.__name__
        color = typer.colors.RED if isinstance(event, FAILURE_EVENTS) else None
        typer.secho(f"[{event.ts}] {k} {{{event_summary(event)}}}", fg=color)
