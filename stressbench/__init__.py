"""
stressbench: sustained-QPS write stress harness.
"""

__version__ = "0.1.0"
