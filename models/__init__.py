"""
Storage bootstrap: a single DBStorage instance shared by the API and services.
"""
from models.db_storage import DBStorage

storage = DBStorage()
storage.reload()
