"""Song Data Pipeline - Song API service.

FastAPI service for on-demand song export/search through the external
tool, plus queueing of batch ingestion runs.
"""

__all__: list[str] = []
