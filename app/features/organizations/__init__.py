"""
Organization types and per-organization feature flags.
"""
