"""
promptsmith — package root

File: src/promptsmith/__init__.py
Last updated: 2026-10-18

Purpose
- Package root for the LLM request execution and response recovery engine.

What should be included in this file
- Version export and a minimal public API surface.
- Import boundary rules: provider SDKs are never imported at package import time.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

__version__ = "0.4.0"

__all__ = ["__version__"]
