"""
Orchestrator Module
===================

Process-level entry points for the memory subsystem.

Components:
    - ConsolidationScheduler: monthly Cold tier consolidation (APScheduler)
    - CLI: command-line interface
    - setup_logging: structured logging configuration

Usage:
    from src.orchestrator import ConsolidationScheduler

    scheduler = ConsolidationScheduler(service.run_consolidation)
    scheduler.start()
"""

from .logging_config import JSONFormatter, setup_logging
from .scheduler import ConsolidationScheduler, RunHistory

__all__ = [
    "JSONFormatter",
    "setup_logging",
    "ConsolidationScheduler",
    "RunHistory",
]
