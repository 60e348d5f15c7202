"""Pipeline orchestrator module.

Provides session state coordination for the generation pipeline with:
- Stage and session state machine transitions
- Bounded retries with error classification
- Recovery strategies and restart-from-first-stage
- Per-capability rate limiting
"""

__all__ = []
