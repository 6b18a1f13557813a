"""
Core modules for flowsmith.

This package contains admission control, the credit ledger, and the
stages of the workflow synthesis pipeline.
"""
