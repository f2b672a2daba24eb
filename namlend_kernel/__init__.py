"""
namlend_kernel -- domain types, persistence, audit trail and logging for
the NamLend lending core.

The kernel is the lowest layer: engines and services import from it, it
imports from neither.
"""
