"""Core primitives shared by every steprun package: errors, logging, cache, deadlines, settings."""
