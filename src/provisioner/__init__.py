"""Storage and automount provisioning core for workspace pods."""
