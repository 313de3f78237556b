"""Warden background worker.

Periodic maintenance of the token revocation set, the one-time token
ledger, the request inbox and expiring role assignments.
"""
