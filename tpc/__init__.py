"""
tpc: flow/meter programming engine for fabric-style P4 pipelines.

Translates slice, QoS, checker and attack policy entries into pipeline
table entries and meters, and keeps them scoped to one application identity.
"""

__version__ = "1.0.0"
