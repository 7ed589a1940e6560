"""Host block-device helpers: commands, loop devices, mounts, payload lookup."""
