"""Evaluation core: generate with one model, judge with another.

Key components:
- extractor: three-tier recovery of (score, explanation) from judge replies
- pipeline: sequential generate -> judge driver with per-item failure isolation
- store: single-writer in-memory test case collection
- dataset: CSV import, CSV/JSON export
"""
