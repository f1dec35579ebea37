# src/__init__.py — v1
"""analysiscache — per-user content-addressable analysis cache and shared entity cache."""

__version__ = "0.1.0"
