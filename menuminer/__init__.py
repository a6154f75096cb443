"""
MenuMiner

Scans photographed restaurant menus: Gemini Vision extracts the menu items,
Google Custom Search attaches candidate photos to each dish, and Google
Sign-In restricted to a single allow-listed address gates the whole service.
"""

__version__ = "1.0.0"
