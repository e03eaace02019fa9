"""
Chat relay: streams LLM gateway output to browsers as paced Server-Sent Events.
"""

__version__ = "0.1.0"
