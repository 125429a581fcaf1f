"""Run monitor — Rich rendering of runs and the ledger's outcome history.

The monitor reads; it never writes to the ledger.
"""
