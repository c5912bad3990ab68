"""
StableGuard Test Suite

Test Organization:
- unit/: Fast tests on in-memory stores and fake price sources
- integration/: SQL-backed storage and the HTTP server
- factories.py: Shared builders for observations, snapshots and reports
"""
