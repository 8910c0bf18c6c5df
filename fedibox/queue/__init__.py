"""
Queue System Module

This module handles redelivery of failed federation deliveries.
"""

from .redelivery import RedeliveryQueue

__all__ = ['RedeliveryQueue']
