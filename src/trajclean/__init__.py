"""
trajclean - cleaning pipeline for flight-trajectory logs.

Subpackages
-----------
- core: ingestion, cleaning stages, cache, lineage, executor, analytics, export
- models: CleaningProfile and per-stage parameter models
- cli: Typer command-line interface
"""

__version__ = "0.1.0"
