"""Run SQL against PostgreSQL and stream rows out as JSON lines or CSV."""

__version__ = '0.1.0'
