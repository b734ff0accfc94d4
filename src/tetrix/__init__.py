"""
Tetrix - Translation Workload Scheduling Engine

This package contains the Tetrix backend services:
- scheduling: Calendar, capacity ledger, distribution engine, conflict
  detection and resolution suggestions
- storage: SQL persistence for the roster, tasks and ledger rows
- api: FastAPI REST endpoints
- platform: Cross-cutting concerns (config, logging, metrics)
"""

__version__ = "0.1.0"
