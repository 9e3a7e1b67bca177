"""Recurring digest scheduling: trigger windows and recap scanners."""
