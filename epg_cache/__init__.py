"""EPG cache: a local, searchable projection of a TVHeadend programme guide."""

__version__ = "0.1.0"
