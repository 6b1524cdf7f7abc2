"""
Background Jobs for Combis.

This module contains scheduled jobs:
- maintenance: closes expired votes and purges old push notifications
"""

from .maintenance import run_maintenance_job

__all__ = ["run_maintenance_job"]
