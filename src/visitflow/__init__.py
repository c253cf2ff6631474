"""
visitflow: clinical visit processing pipeline

Turns a recorded visit into a structured patient record (transcription,
summarization, core commit) and drives the post-commit side effects through
a per-operation retry ledger.
"""

__version__ = "0.1.0"
__author__ = "visitflow team"
__description__ = "Recoverable visit processing pipeline with a post-commit operation ledger"
