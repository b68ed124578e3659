"""
Archivo de inicialización para el paquete de utilidades.
"""

from .phone_normalizer import InvalidFormat, format_phone_number, strip_address_suffix

__all__ = ['InvalidFormat', 'format_phone_number', 'strip_address_suffix']
