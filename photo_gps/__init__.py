"""
Photo GPS

Wildlife photo catalog: reprocessing pipeline and similarity retrieval.
"""

__version__ = "0.1.0"
