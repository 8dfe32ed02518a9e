"""
Bridge - direct peer-to-peer file transfer over TCP.

One peer listens, the other dials its IP address and streams a file.
"""

__version__ = '1.0.0'
