"""
Attendance Trust Engine - multi-signal verification of attendance attempts
"""
__version__ = "1.0.0"
