"""VISO back-office backend: sites, staff and Vento Pass customers."""

__version__ = "0.1.0"
