"""Archive pack ingestion: overlays, sound effects and lookup-table packs."""

__version__ = "0.1.0"
