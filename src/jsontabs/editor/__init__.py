"""Editor package containing the tab model, registry, and synchronizer."""

from . import document_model, synchronizer, workspace

__all__ = ["document_model", "synchronizer", "workspace"]
