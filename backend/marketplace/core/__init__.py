"""
Core package for configuration, logging, and security utilities.
"""
