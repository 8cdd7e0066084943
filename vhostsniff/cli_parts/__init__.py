"""CLI mode handlers split out of `vhostsniff.cli`."""
