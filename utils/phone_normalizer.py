"""
Utilidades para normalización de números de teléfono de Ruanda.

Este módulo convierte números escritos de forma libre (con espacios,
guiones, paréntesis o '+') al formato de dirección que espera WhatsApp
Web: '<código de país + abonado>@c.us'.
"""

import re


COUNTRY_CODE = '250'
SUBSCRIBER_LENGTH = 9
ADDRESS_SUFFIX = '@c.us'


class InvalidFormat(ValueError):
    """El número no corresponde a ningún formato ruandés aceptado."""

    def __init__(self, expected: str):
        self.expected = expected
        super().__init__(f"Invalid Rwandan phone number: {expected}")


def strip_address_suffix(address: str) -> str:
    """
    Elimina el sufijo '@c.us' de una dirección canónica.

    Examples:
        >>> strip_address_suffix("250788123456@c.us")
        '250788123456'
    """
    if address.endswith(ADDRESS_SUFFIX):
        return address[:-len(ADDRESS_SUFFIX)]
    return address


def format_phone_number(phone_number: str) -> str:
    """
    Normaliza un número de Ruanda a la dirección canónica de WhatsApp.

    Formatos aceptados (después de quitar todo lo que no sea dígito):
    - 250XXXXXXXXX (12 dígitos con código de país)
    - 0XXXXXXXXX   (10 dígitos, formato local)
    - XXXXXXXXX    (9 dígitos, sin prefijo)

    Args:
        phone_number: Número en cualquier formato

    Returns:
        str: Dirección canónica, por ejemplo '250788123456@c.us'

    Raises:
        InvalidFormat: Si el número no encaja en ninguno de los formatos

    Examples:
        >>> format_phone_number("0788123456")
        '250788123456@c.us'
        >>> format_phone_number("+250 (788) 123-456")
        '250788123456@c.us'
    """
    if not isinstance(phone_number, str):
        raise InvalidFormat("expected the phone number as a string")

    cleaned = re.sub(r'[^0-9]', '', phone_number)

    if cleaned.startswith(COUNTRY_CODE):
        if len(cleaned) != len(COUNTRY_CODE) + SUBSCRIBER_LENGTH:
            raise InvalidFormat("expected 12 digits with country code 250")
        return cleaned + ADDRESS_SUFFIX

    if cleaned.startswith('0'):
        if len(cleaned) != SUBSCRIBER_LENGTH + 1:
            raise InvalidFormat("expected 10 digits starting with 0")
        # Se reemplaza el 0 local por el código de país
        return COUNTRY_CODE + cleaned[1:] + ADDRESS_SUFFIX

    if len(cleaned) == SUBSCRIBER_LENGTH:
        return COUNTRY_CODE + cleaned + ADDRESS_SUFFIX

    raise InvalidFormat("expected 250XXXXXXXXX, 0XXXXXXXXX, or XXXXXXXXX")
