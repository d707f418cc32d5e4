"""Song Data Pipeline - Core application modules.

Provides:
- Song record model and SQL-backed record store
- Durable retry queue with dead-letter escalation
- Batch ingestion orchestrator
- Core utilities: atomic_io, failpoints, paths
"""

__version__ = "0.1.0"
