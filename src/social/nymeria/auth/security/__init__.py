"""
Request hardening: identifier minting, input sanitization and rate limiting.
"""
