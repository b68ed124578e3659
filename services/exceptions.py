"""
Excepciones del gateway HTTP.

Cada excepción conoce el código HTTP con el que debe responderse, de forma
que los manejadores de Flask puedan convertirla en el sobre JSON
{success, error} sin lógica adicional.
"""

from typing import Any, Dict


class GatewayError(Exception):
    """Error base del gateway, con código HTTP asociado."""

    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': False,
            'error': self.message
        }


class NotReady(GatewayError):
    """El cliente de WhatsApp todavía no está conectado."""

    status_code = 503

    def __init__(self, message: str = "WhatsApp client is not ready. Please check /status endpoint."):
        super().__init__(message)


class MissingField(GatewayError):
    status_code = 400


class NotRegistered(GatewayError):
    """El número destino no tiene cuenta de WhatsApp."""

    status_code = 400

    def __init__(self, message: str = "Phone number is not registered on WhatsApp"):
        super().__init__(message)


class SendFailure(GatewayError):
    """Fallo del cliente o del transporte durante una operación."""

    status_code = 500


class InvalidWebhook(GatewayError):
    status_code = 400


class InvalidPhoneNumber(GatewayError):
    """El número no tiene un formato ruandés válido."""

    status_code = 400
