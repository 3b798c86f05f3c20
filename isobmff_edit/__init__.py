"""
ISOBMFF edit list package.

Provides pure Python serialization for the edit boxes of ISO base media
files (MP4, HEIF):

- bitstream: Big-endian byte buffer with bounded sub-streams
- box: Generic box / full box headers and size backpatching
- edit_box: Edit List Box (elst) and Edit Box (edts)
- configs: Environment-driven settings and logging setup
"""
