"""
docforge: iterative document generation on top of interchangeable LLM backends.
"""

__version__ = "0.1.0"
