"""CutRoom: shot generation and montage rendering."""

__version__ = "0.1.0"
