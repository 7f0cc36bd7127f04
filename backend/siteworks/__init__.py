"""
Siteworks - frontage, subdivision and electrical connection decisions for cadastral parcels.
"""

__version__ = "1.0.0"
