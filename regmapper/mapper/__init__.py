# mapper package
"""Requirement → control mapping stages (keyword and semantic)."""
