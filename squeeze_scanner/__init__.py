"""
Squeeze scanner: incremental ticker staging and deterministic signal ranking.
"""
__version__ = "0.1.0"
