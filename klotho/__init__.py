"""Klotho: state of charge estimation for battery cells with enhanced self-correcting models"""
import importlib.metadata

__version__ = importlib.metadata.version('klotho')
