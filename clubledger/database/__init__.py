"""
Database package
"""
