"""
Pack Calculator service.
"""
