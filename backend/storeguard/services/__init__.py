"""
StoreGuard Backend: Services Layer
====================================

What:  The guard state and decision logic, independent of Starlette.

Service Inventory:
    - ClientWindowRegistry: fixed-window counters and admit/reject decisions
    - ConcurrencyGauge: in-flight request counts with exactly-once release
    - LivenessCache: TTL-cached database probe verdicts
    - LivenessProbe (abstract): how to reach the backing store

Why separate from middleware:
    Every decision can be unit-tested with a fake clock and no HTTP stack;
    the middleware only translates ASGI traffic into calls on these objects.
"""
