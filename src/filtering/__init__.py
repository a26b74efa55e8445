"""Background filtering engine.

This package answers (query, badge filters) requests against one
dataset, in a separate process when available and inline otherwise.
"""
