"""Sensor event records and their JSON form, file classification, and models of filtering, banning, isolation, statistics and the event channel."""

__version__ = "0.1.0"