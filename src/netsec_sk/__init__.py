"""netsec-sk: git-backed state knowledge for firewall and Panorama support files."""

__version__ = "0.1.0"
