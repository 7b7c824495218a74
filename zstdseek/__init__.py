"""Write Zstandard files in the seekable format and read them at any uncompressed offset."""

__version__ = "0.7.3"