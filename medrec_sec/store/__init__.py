"""
Content-addressed store module
"""

from .adapter import ContentStore, InMemoryContentStore, IpfsHttpStore, create_content_store

__all__ = [
    "ContentStore",
    "InMemoryContentStore",
    "IpfsHttpStore",
    "create_content_store",
]
