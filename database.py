"""
MongoDB connection

`db` is None when DATABASE_URL is not set, in which case the app keeps its
state in memory only.
"""

import os

from pymongo import MongoClient

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "frosty")

client = MongoClient(DATABASE_URL) if DATABASE_URL else None
db = client[DATABASE_NAME] if client is not None else None
