"""
Core modules for Eco Ledger.

This package contains the unit economics table, conversion constants,
the retry policy, and the session ledger.
"""
