"""
shared/__init__.py

Shared utilities and models used across multiple modules.

This package contains common functionality used by the adapters, the orchestrator, the
credential gate and the API layer:
- models: Common data structures and type definitions
- utils: Utility functions and helpers
"""
