"""
Archivo de inicialización para el paquete de servicios.

Este archivo permite importar los servicios de forma más limpia desde
otros módulos del proyecto.
"""

from .connection_state import ConnectionState, ConnectionTracker
from .whatsapp_client import WhatsAppClient, WhatsAppClientError

__all__ = ['ConnectionState', 'ConnectionTracker', 'WhatsAppClient', 'WhatsAppClientError']
