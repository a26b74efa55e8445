"""Local record store and SDK facade.

This package persists committed datasets as metadata, badge stats,
and index-addressable account ranges, and exposes them to callers.
"""
