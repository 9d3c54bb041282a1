"""In-process simulated RPC network, message codec and linearizability checker."""

__version__ = "0.1.0"