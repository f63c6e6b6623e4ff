"""
oneM2M protocol client for entity, container and content instance resources
"""

from .client import OneM2MClient
from .models import ContentInstance, RegistrationOutcome, StateRead, coerce_content_state

__all__ = ['OneM2MClient', 'ContentInstance', 'RegistrationOutcome', 'StateRead', 'coerce_content_state']
