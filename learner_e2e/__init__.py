"""
Dependency Learner End-to-End Harness

Provisions an ephemeral mesh topology, drives a request through the gateway
running the dependency-learner module, checks the header it stamps, and
tears everything down again.

Components:
    1. Remote object client (kube.client)
    2. Topology builder (topology)
    3. Readiness waiter (waiter)
    4. Verification probe (probe)
    5. Lifecycle controller (lifecycle)
"""

__version__ = "0.1.0"
