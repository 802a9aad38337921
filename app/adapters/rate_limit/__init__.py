"""Rate limiting adapters.

This package provides a small abstraction layer so counters can start in
memory and later migrate to Redis or another shared store without changing
the processor or the API layer.
"""
