"""syncdeploy - Continuous build-and-deploy over a pooled FTP connection."""

__version__ = "0.1.0"
