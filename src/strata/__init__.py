# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

"""Hierarchical workspace provisioning and readiness-gated reconciliation."""

__version__ = "0.1.0"
