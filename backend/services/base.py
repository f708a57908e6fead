"""
Base service class
"""

from abc import ABC


class BaseService(ABC):
    """
    Base class for all services.
    
    Services orchestrate domain logic over the optimizer store.
    """
    pass

