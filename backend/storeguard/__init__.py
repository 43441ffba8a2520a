"""
StoreGuard Backend: Application Package
=========================================

What: Request-admission and liveness-guard layer for the storefront API.
Why:  The storefront backend must survive bursts, stalled handlers and
      database outages without taking the whole process down with it.

Architecture Note:
    The package keeps the usual layered split:

    ┌─────────────────────────────────────┐
    │      Middleware (Guard Chain)       │  ← admission, tracking, deadlines
    ├─────────────────────────────────────┤
    │        Routes (API Layer)           │  ← health, diagnostics
    ├─────────────────────────────────────┤
    │   Services (Guard State & Logic)    │  ← counters, gauge, liveness cache
    ├─────────────────────────────────────┤
    │      Database (Persistence)         │  ← async SQLAlchemy engine + probe
    └─────────────────────────────────────┘

    Middleware classes stay thin: every decision lives in a service object
    that can be constructed per test and driven with a fake clock.
"""

__version__ = "1.0.0"
