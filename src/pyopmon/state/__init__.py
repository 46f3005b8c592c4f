"""Progress state layer.

This package is the single place where lifecycle envelopes are folded into
per-operation progress snapshots.
"""
