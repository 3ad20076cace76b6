"""
FileConverter - media conversion jobs driven by FFmpeg
"""

__version__ = "1.2.0"
