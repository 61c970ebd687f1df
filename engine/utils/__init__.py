"""
BOQ Recon Utils - Modular utility functions.

Submodules:
- core: Logging, errors, and JSON helpers
- llm: Structured-extraction service client (Gemini)
- document: Document loading (PDF, Word, spreadsheets, images)
"""

from utils import core
from utils import llm
from utils import document

__all__ = [
    "core",
    "llm",
    "document",
]
