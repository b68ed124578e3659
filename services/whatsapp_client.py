"""
Cliente de WhatsApp Web a través del bridge.

La sesión de WhatsApp Web (navegador, autenticación por QR, persistencia
de sesión) vive en un proceso bridge externo. Este módulo encapsula toda
la comunicación HTTP con ese bridge y expone un registro de eventos del
ciclo de vida (qr, ready, authenticated, ...) al que se suscribe el
resto de la aplicación.
"""

import os
import logging
import threading
import requests
from typing import Any, Callable, Dict, List, Optional
from dotenv import load_dotenv

# Cargar variables de entorno al importar el módulo
load_dotenv()

logger = logging.getLogger(__name__)


EVENTS = (
    'qr',
    'ready',
    'authenticated',
    'auth_failure',
    'disconnected',
    'loading_screen',
    'change_state',
)


class WhatsAppClientError(Exception):
    """Error de transporte o del bridge al ejecutar una operación."""


class WhatsAppClient:
    """
    Cliente HTTP para el bridge de WhatsApp Web.

    Las operaciones (initialize, is_registered_user, send_message, ...) se
    traducen en peticiones al bridge con un timeout explícito, de modo que
    una llamada colgada nunca bloquea indefinidamente la petición HTTP que
    la originó.

    Los eventos llegan desde el bridge (vía webhook) y se reparten con
    emit() a los manejadores registrados con on().
    """

    def __init__(self, base_url: str = None, timeout: float = None,
                 client_id: str = None, data_path: str = None,
                 session: requests.Session = None):
        """
        Inicializa el cliente con la configuración del bridge.

        Args:
            base_url: URL base del bridge (default: WHATSAPP_BRIDGE_URL)
            timeout: Segundos máximos por petición (default: BRIDGE_TIMEOUT)
            client_id: Identificador de la sesión persistida en el bridge
            data_path: Ruta donde el bridge guarda la sesión
            session: Sesión de requests (inyectable para pruebas)
        """
        self.base_url = (base_url or os.getenv("WHATSAPP_BRIDGE_URL", "http://localhost:3000")).rstrip('/')
        self.timeout = timeout if timeout is not None else float(os.getenv("BRIDGE_TIMEOUT", "30"))
        self.client_id = client_id or os.getenv("WHATSAPP_CLIENT_ID", "whatsapp-bot")
        self.data_path = data_path or os.getenv("SESSION_PATH", "./sessions")
        self.session = session or requests.Session()
        self.headers = {
            'Content-Type': 'application/json'
        }

        self._handlers: Dict[str, List[Callable[..., Any]]] = {event: [] for event in EVENTS}
        self._handlers_lock = threading.Lock()

        logger.info(f"WhatsApp client configured with bridge URL: {self.base_url}")

    # ------------------------------------------------------------------
    # Eventos
    # ------------------------------------------------------------------

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        """
        Registra un manejador para un evento del ciclo de vida.

        Raises:
            ValueError: Si el evento no existe
        """
        if event not in self._handlers:
            raise ValueError(f"Unknown event: {event}")
        with self._handlers_lock:
            self._handlers[event].append(handler)

    def emit(self, event: str, *args: Any) -> None:
        """
        Entrega un evento a todos sus manejadores, en orden de registro.

        Raises:
            ValueError: Si el evento no existe
        """
        if event not in self._handlers:
            raise ValueError(f"Unknown event: {event}")
        with self._handlers_lock:
            handlers = list(self._handlers[event])
        for handler in handlers:
            handler(*args)

    # ------------------------------------------------------------------
    # Operaciones
    # ------------------------------------------------------------------

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Ejecuta una petición al bridge y devuelve el JSON de respuesta.

        Raises:
            WhatsAppClientError: Timeout, error de conexión o respuesta no 2xx
        """
        url = f"{self.base_url}{path}"

        try:
            response = self.session.request(
                method,
                url,
                json=payload,
                headers=self.headers,
                timeout=self.timeout
            )
        except requests.exceptions.Timeout:
            raise WhatsAppClientError(f"bridge did not respond within {self.timeout:g}s")
        except requests.exceptions.ConnectionError:
            raise WhatsAppClientError(f"could not connect to bridge at {self.base_url}")
        except requests.exceptions.RequestException as e:
            raise WhatsAppClientError(str(e))

        if not response.ok:
            try:
                error_data = response.json()
            except ValueError:
                error_data = {}
            detail = error_data.get('error') if isinstance(error_data, dict) else None
            raise WhatsAppClientError(detail or f"HTTP {response.status_code}: {response.text}")

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            raise WhatsAppClientError(f"unexpected response from bridge: {response.text}")

    def initialize(self) -> None:
        """
        Pide al bridge que arranque (o reanude) la sesión de WhatsApp Web.

        El resultado llega de forma asíncrona como eventos (qr, ready, ...).
        """
        logger.info(f"Initializing WhatsApp session '{self.client_id}'")
        self._request('POST', '/initialize', {
            'clientId': self.client_id,
            'dataPath': self.data_path
        })

    def is_registered_user(self, address: str) -> bool:
        """Indica si la dirección canónica tiene cuenta de WhatsApp."""
        result = self._request('GET', f"/registered/{address}")
        return bool(result.get('registered'))

    def _extract_message_id(self, result: Dict[str, Any]) -> str:
        # El bridge puede devolver {id: {id: ...}} (objeto Message) o {id: ...}
        message_id = result.get('id')
        if isinstance(message_id, dict):
            message_id = message_id.get('id')
        if not message_id:
            raise WhatsAppClientError(f"unexpected response from bridge: {result}")
        return str(message_id)

    def send_message(self, address: str, text: str) -> str:
        """
        Envía un mensaje de texto.

        Args:
            address: Dirección canónica ('250788123456@c.us')
            text: Contenido del mensaje

        Returns:
            str: ID del mensaje enviado
        """
        result = self._request('POST', '/send-message', {
            'chatId': address,
            'message': text
        })
        return self._extract_message_id(result)

    def send_media(self, address: str, media: Optional[Dict[str, Any]] = None,
                   media_url: Optional[str] = None, caption: Optional[str] = None) -> str:
        """
        Envía un archivo multimedia.

        Args:
            address: Dirección canónica
            media: {'mimetype', 'data' (base64), 'filename'} con el contenido
            media_url: URL pública del archivo, alternativa a media
            caption: Texto opcional que acompaña al archivo

        Returns:
            str: ID del mensaje enviado
        """
        payload: Dict[str, Any] = {'chatId': address}
        if media is not None:
            payload['media'] = media
        if media_url:
            payload['mediaUrl'] = media_url
        if caption:
            payload['caption'] = caption

        result = self._request('POST', '/send-media', payload)
        return self._extract_message_id(result)

    def logout(self) -> None:
        """Cierra la sesión y borra la sesión persistida en el bridge."""
        logger.info(f"Logging out WhatsApp session '{self.client_id}'")
        self._request('POST', '/logout', {'clientId': self.client_id})
