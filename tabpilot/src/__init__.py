"""tabpilot core packages: agent loop, page host, planning oracles, skills."""
