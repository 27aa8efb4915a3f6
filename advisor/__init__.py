"""Verified school advisor: role-gated answers and confirmed writes over school records."""
