"""
Benchmarking harness for UDP servers.

This package floods one or more target servers from a pool of client
endpoints, samples the inbound message rate over fixed windows and ranks the
servers by average throughput, optionally rendering charts and CSV artefacts.
"""

from .main import main

__all__ = ["main"]
