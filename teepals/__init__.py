"""TeePals rounds service: golf round lifecycle and membership coordination."""

__version__ = "0.1.0"
