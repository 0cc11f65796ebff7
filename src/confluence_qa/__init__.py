"""
Confluence knowledge base ingestion and retrieval-augmented question answering.
"""

__version__ = "1.0.0"
