"""HTTP surface for the escrow service."""
