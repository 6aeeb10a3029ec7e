"""HTTP surface for pack ingestion."""

from .server import create_app

__all__ = ['create_app']
