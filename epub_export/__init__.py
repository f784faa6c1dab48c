"""
Translated-novel EPUB export
"""
