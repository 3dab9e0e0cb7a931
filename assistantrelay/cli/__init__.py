"""
Command line interface for assistantrelay.
"""
