"""Plugin subsystem: discovery, installation, backend calls and dashboards."""
