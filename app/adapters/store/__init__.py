"""Entity store adapters.

This package hides the relational engine behind a small interface so the
repositories only ever see query/stage/commit primitives.
"""
