"""
Update installer - installs versioned update packages for a locally stored
application and falls back to the last known good version when a package's
pre-install check fails.
"""

__version__ = "0.1.0"
