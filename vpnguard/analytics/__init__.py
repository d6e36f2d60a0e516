"""Connection metric statistics and default measurement probes."""
