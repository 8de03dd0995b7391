"""
Data operations package for uploaded datasets.

Provides in-memory parsing of CSV/JSON uploads, per-field statistics and the
synopsis text used to brief the model.
"""
