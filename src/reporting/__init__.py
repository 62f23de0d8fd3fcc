"""Report lifecycle: state machine, access rules, validation handoff.

Deterministic core. Storage, validation and audit are injected collaborators.
"""
