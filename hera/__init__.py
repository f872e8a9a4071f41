"""
hera: cached CRUD core over the six universal tables
"""
import logging

logging.getLogger(__name__).addHandler(logging.NullHandler())
