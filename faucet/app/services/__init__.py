"""Claim services: limiters, credential rotation, dispatch, ledger and audit."""
