"""
Harvest faculty publications from PubMed and funding awards from NIH RePORTER.
"""
