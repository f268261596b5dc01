"""HTTP surface of the billing access service."""
