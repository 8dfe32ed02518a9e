"""
API Module - REST control surface for the transfer manager.
"""

from .rest import create_app, run_api_server

__all__ = ['create_app', 'run_api_server']
