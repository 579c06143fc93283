"""Device snapshots and the command dispatcher used by automations."""
