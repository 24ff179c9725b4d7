from functools import lru_cache
import os

from dotenv import load_dotenv
from pymongo import MongoClient

load_dotenv()

MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB = os.getenv("MONGO_DB", "website_to_figma")


@lru_cache(maxsize=1)
def get_db():
    # Connects lazily; nothing touches the server until the first query.
    client = MongoClient(MONGO_URI, serverSelectionTimeoutMS=2000)
    return client[MONGO_DB]
