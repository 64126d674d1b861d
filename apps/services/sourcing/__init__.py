# Sourcing package initializer
# Makes `apps.services.sourcing` importable as a regular package for tests and the job harness.
#
# Keep this file minimal. Importing heavy submodules here (playwright) would slow test collection.

"""Sourcing package.

Matches procurement items against marketplace listings:
- marketplace_pipeline (primary)
- open_web_pipeline (secondary)
- fallback_coordinator (escalation, run_batch)
- runner (browser lifecycle for a batch)
"""

__all__ = ["marketplace_pipeline", "open_web_pipeline", "fallback_coordinator", "models", "runner"]

__version__ = "0.1.0"
