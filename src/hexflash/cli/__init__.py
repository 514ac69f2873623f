"""
hexflash Command-Line Interface
===============================

This package provides the `hexflash` command:

- **flash**: encode a binary image and send it to the device
- **encode**: write the encoded records as Intel-HEX text
- **ports**: list serial ports

The tool is implemented as a Click application with comprehensive help
and error reporting.
"""

__all__ = ["hexflash"]
