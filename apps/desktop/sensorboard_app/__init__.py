"""Command line app for the sensorboard dashboard."""
