"""Report assembly for detector findings."""
