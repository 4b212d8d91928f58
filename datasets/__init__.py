"""
Socrata dataset connectors for NYC Open Data.
"""
