"""Gutzo storefront cart engine."""
