"""Rounds module: round lifecycle and membership coordination.

Provides the round coordinator service, capacity allocator, membership
state machine, storage layer and API for scheduled tee-time rounds where
a host gathers a limited roster of golfers.
"""
