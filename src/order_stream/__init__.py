"""Real-time order change streaming"""

__version__ = "0.1.0"
