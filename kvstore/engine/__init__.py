"""
Storage engine bindings.
"""

from kvstore.engine.btree_file import BTreeFile, Bucket, Cursor, Transaction

__all__ = ["BTreeFile", "Bucket", "Cursor", "Transaction"]
