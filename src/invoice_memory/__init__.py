"""
Invoice → Recall → Apply → Decide → Learn

A memory-driven normalization pipeline for vendor invoices. Learned,
vendor- and field-specific corrections are applied with confidence
scoring, and every invoice is either auto-processed or escalated to a
human with a four-step audit trail.
"""

__version__ = "0.1.0"
