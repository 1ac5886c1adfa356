"""Boundary adapters for HTTP and RPC servers."""
