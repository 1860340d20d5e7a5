"""
tubewatch: monitor channels, rank viral uploads, and download them.
"""

__version__ = "0.4.0"
