"""Seed-data loaders for the in-memory backend."""

from .workbook import SEED_TABLES, load_seed_workbook, write_seed_workbook

__all__ = [
    "SEED_TABLES",
    "load_seed_workbook",
    "write_seed_workbook",
]
