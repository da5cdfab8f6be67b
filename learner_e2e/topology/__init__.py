"""Topology graph and builder."""
