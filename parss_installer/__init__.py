"""PARSS installer (Python-first, phase-driven).

Core design goals:
- Fixed phase order, resumable from any phase
- Durable, append-only session facts
- Destructive actions gated behind typed confirmation
- Every flaky step retried, every destructive step run exactly once
- Centralized logging with a separate error transcript
"""

__version__ = "2.4.0"

__all__ = ["__version__"]
