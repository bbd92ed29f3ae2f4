"""leasekeeper: lease-based leader election for cluster candidates.

Elects one active candidate through a versioned lease, keeps exactly one
candidate carrying the leader marker, and publishes the leader identity.
"""

__version__ = "0.1.0"
