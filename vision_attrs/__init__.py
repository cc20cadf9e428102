"""Schema-driven garment attribute extraction from product images."""

__version__ = "0.1.0"
