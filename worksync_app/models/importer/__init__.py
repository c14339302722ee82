"""
Importer-specific SQLAlchemy models: external sync runs and the provider
entity mapping table.
"""

from .schema import ImportRun, ImportRunStatus, IntegrationEntityMap

__all__ = [
    "ImportRun",
    "ImportRunStatus",
    "IntegrationEntityMap",
]
