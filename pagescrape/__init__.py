"""
Paginated page extraction with quality-scored backend fallback.

This module provides a service that extracts structured records from
paginated pages with one of several extraction backends (static HTTP,
rendered browser, XPath, adaptive rendered), and escalates to alternate
backends when the results look poor.
"""
