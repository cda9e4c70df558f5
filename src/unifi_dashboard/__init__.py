"""UniFi operations dashboard."""
