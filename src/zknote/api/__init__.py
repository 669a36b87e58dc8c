"""HTTP surface for deposit and withdraw."""
