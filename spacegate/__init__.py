"""SpaceGate: membership, invitation, session and scope authorization engine."""
