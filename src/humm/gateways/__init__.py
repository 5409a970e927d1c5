# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Capability gateways consumed by the orchestrator.

Both gateways try an ordered list of providers and collapse to a
deterministic value instead of raising.
"""
