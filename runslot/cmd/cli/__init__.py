"""
Sub functionalities of the runslot CLI
"""

from .serve import serve_app
from .runs import runs_app
from .config import config_app
