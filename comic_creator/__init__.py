"""
Comic Creator — prompt-to-comic-book generator.

Script (Gemini text) → panel artwork (Gemini image, one panel at a time)
→ A4 pages → PDF / ZIP, with whole-project checkpoints in SQLite.

Entry point: python -m comic_creator
"""

__version__ = "0.1.0"
