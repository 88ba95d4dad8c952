"""
Conformance Test Suite

Normative behavior of the lending core, organized by invariant:
1. atomicity.py - Operations are all-or-nothing across ledger transactions
2. properties.py - Conservation, vault books, credit ordering, donation resistance

These tests use hypothesis for property-based testing.
"""
