"""kgsync -- keep a design knowledge graph consistent with generated code."""

__version__ = "0.3.0"
