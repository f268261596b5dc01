"""Bearer token verification and caller identity extraction."""
