"""
Shared Kernel Module
====================

Shared infrastructure used across the application (logging, API middleware).

DO NOT add triage business logic to the shared kernel.
"""

__version__ = "1.0.0"
