"""
API REST del gateway de WhatsApp.

Este servidor Flask expone endpoints para consultar el estado de la
sesión de WhatsApp Web, obtener el código QR de autenticación y enviar
mensajes a números de Ruanda. La sesión en sí la gestiona un bridge
externo; aquí solo se enrutan peticiones y se refleja su estado.
"""

import os
import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from flask import Flask, request, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException
from dotenv import load_dotenv

from services.connection_state import ConnectionTracker
from services.exceptions import (
    GatewayError,
    InvalidPhoneNumber,
    InvalidWebhook,
    MissingField,
    NotReady,
    NotRegistered,
    SendFailure
)
from services.whatsapp_client import WhatsAppClient, WhatsAppClientError
from utils.phone_normalizer import InvalidFormat, format_phone_number


# Cargar variables de entorno desde .env
load_dotenv()


@dataclass
class GatewayConfig:
    """Configuración del gateway leída del entorno."""

    port: int = 6000
    debug: bool = False
    bridge_url: str = "http://localhost:3000"
    bridge_timeout: float = 30.0
    client_id: str = "whatsapp-bot"
    session_path: str = "./sessions"
    reconnect_delay: float = 5.0
    webhook_token: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> 'GatewayConfig':
        return cls(
            port=int(os.getenv('PORT', 6000)),
            debug=os.getenv('FLASK_ENV', 'production') == 'development',
            bridge_url=os.getenv('WHATSAPP_BRIDGE_URL', 'http://localhost:3000'),
            bridge_timeout=float(os.getenv('BRIDGE_TIMEOUT', '30')),
            client_id=os.getenv('WHATSAPP_CLIENT_ID', 'whatsapp-bot'),
            session_path=os.getenv('SESSION_PATH', './sessions'),
            reconnect_delay=float(os.getenv('RECONNECT_DELAY_SECONDS', '5')),
            webhook_token=os.getenv('WEBHOOK_TOKEN') or None,
            log_level=os.getenv('LOG_LEVEL', 'INFO').upper()
        )


# Argumentos de cada evento del bridge, extraídos del campo 'data'
WEBHOOK_EVENTS = {
    'qr': lambda data: (data.get('qr'),),
    'ready': lambda data: (),
    'authenticated': lambda data: (),
    'auth_failure': lambda data: (data.get('message'),),
    'disconnected': lambda data: (data.get('reason'),),
    'loading_screen': lambda data: (data.get('percent'), data.get('message')),
    'change_state': lambda data: (data.get('state'),),
}


PUBLIC_ROUTES = r"^/(status|qr|health|send-message|send-media|logout|chat-info/.*)$"


def utc_timestamp() -> str:
    """Marca de tiempo ISO-8601 en UTC con milisegundos, por ejemplo '2024-01-01T12:00:00.000Z'."""
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def read_body() -> Dict[str, Any]:
    """Devuelve el body como dict, aceptando JSON o form-urlencoded."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def create_app(config: GatewayConfig = None, client=None) -> Flask:
    """
    Construye la aplicación Flask con sus servicios.

    Args:
        config: Configuración (default: GatewayConfig.from_env())
        client: Cliente de WhatsApp (default: WhatsAppClient hacia el bridge)

    Returns:
        Flask: Aplicación lista para servir
    """
    config = config or GatewayConfig.from_env()

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    app = Flask(__name__)

    # CORS solo para las rutas públicas; /webhook es exclusivo del bridge
    CORS(app, resources={PUBLIC_ROUTES: {}})

    if not config.webhook_token:
        app.logger.warning("WEBHOOK_TOKEN is not set: /webhook will reject every event")

    if client is None:
        client = WhatsAppClient(
            base_url=config.bridge_url,
            timeout=config.bridge_timeout,
            client_id=config.client_id,
            data_path=config.session_path
        )

    tracker = ConnectionTracker(client, reconnect_delay=config.reconnect_delay)
    tracker.subscribe()

    app.config['GATEWAY'] = config
    app.extensions['whatsapp_client'] = client
    app.extensions['connection_tracker'] = tracker

    def require_ready() -> None:
        if not tracker.ready:
            raise NotReady()

    def normalize(phone_number: str) -> str:
        try:
            return format_phone_number(phone_number)
        except InvalidFormat as e:
            raise InvalidPhoneNumber(str(e))

    def ensure_registered(address: str, action: str) -> None:
        try:
            registered = client.is_registered_user(address)
        except WhatsAppClientError as e:
            raise SendFailure(f"Failed to {action}: {e}")
        if not registered:
            raise NotRegistered()

    @app.route('/status', methods=['GET'])
    def status():
        """
        Estado actual de la sesión de WhatsApp.

        Returns:
            JSON: status ('ready' | 'not_ready'), qrCode y mensaje descriptivo
        """
        state = tracker.snapshot()
        return jsonify({
            'status': 'ready' if state.ready else 'not_ready',
            'qrCode': state.qr_payload,
            'message': (
                'Bot is ready to send messages' if state.ready
                else 'Bot is not ready. Please scan QR code if available.'
            )
        }), 200

    @app.route('/qr', methods=['GET'])
    def qr():
        """Código QR pendiente de escanear, si existe."""
        state = tracker.snapshot()
        if state.qr_payload:
            return jsonify({
                'qrCode': state.qr_payload,
                'message': 'Please scan this QR code with your WhatsApp mobile app'
            }), 200
        if state.ready:
            return jsonify({
                'message': 'Bot is already authenticated and ready'
            }), 200
        return jsonify({
            'message': 'QR code not available yet. Please wait...'
        }), 200

    @app.route('/send-message', methods=['POST'])
    def send_message():
        """
        Envía un mensaje de texto a un número de Ruanda.

        Request Body:
            {
                "phoneNumber": "0788123456",
                "message": "Texto del mensaje"
            }

        Returns:
            JSON: messageId, destino, mensaje y timestamp, o error
        """
        # La disponibilidad se comprueba antes de mirar el body
        require_ready()

        data = read_body()
        phone_number = data.get('phoneNumber')
        message = data.get('message')

        if not phone_number or not message:
            raise MissingField("Phone number and message are required")

        if not isinstance(message, str):
            raise MissingField("Message must be a string")

        address = normalize(phone_number)
        ensure_registered(address, 'send message')

        try:
            message_id = client.send_message(address, message)
        except WhatsAppClientError as e:
            app.logger.error(f"Error sending message: {e}")
            raise SendFailure(f"Failed to send message: {e}")

        app.logger.info(f"Message {message_id} sent to {address}")
        return jsonify({
            'success': True,
            'messageId': message_id,
            'to': phone_number,
            'message': message,
            'timestamp': utc_timestamp()
        }), 200

    @app.route('/send-media', methods=['POST'])
    def send_media():
        """
        Envía un archivo multimedia.

        Request Body:
            {
                "phoneNumber": "0788123456",
                "media": {"mimetype": "image/png", "data": "<base64>", "filename": "foto.png"},
                "caption": "Texto opcional"
            }

        En lugar de "media" se puede enviar "mediaUrl" con una URL pública.
        """
        require_ready()

        data = read_body()
        phone_number = data.get('phoneNumber')
        media = data.get('media')
        media_url = data.get('mediaUrl')
        caption = data.get('caption')

        if not phone_number or not (media or media_url):
            raise MissingField("Phone number and media (or mediaUrl) are required")

        if media is not None and (not isinstance(media, dict) or not media.get('mimetype') or not media.get('data')):
            raise MissingField("Media must include mimetype and base64 data")

        address = normalize(phone_number)
        ensure_registered(address, 'send media')

        try:
            message_id = client.send_media(address, media=media, media_url=media_url, caption=caption)
        except WhatsAppClientError as e:
            app.logger.error(f"Error sending media: {e}")
            raise SendFailure(f"Failed to send media: {e}")

        app.logger.info(f"Media message {message_id} sent to {address}")
        return jsonify({
            'success': True,
            'messageId': message_id,
            'to': phone_number,
            'caption': caption,
            'timestamp': utc_timestamp()
        }), 200

    @app.route('/chat-info/<phone_number>', methods=['GET'])
    def chat_info(phone_number):
        """Dirección canónica de un número y si tiene cuenta de WhatsApp."""
        require_ready()

        address = normalize(phone_number)
        try:
            registered = client.is_registered_user(address)
        except WhatsAppClientError as e:
            raise SendFailure(f"Failed to get chat info: {e}")

        return jsonify({
            'success': True,
            'chatId': address,
            'phoneNumber': phone_number,
            'isRegistered': registered
        }), 200

    @app.route('/logout', methods=['POST'])
    def logout():
        """Cierra la sesión de WhatsApp; la próxima vez habrá que escanear un QR."""
        require_ready()

        try:
            client.logout()
        except WhatsAppClientError as e:
            raise SendFailure(f"Failed to logout: {e}")

        tracker.mark_logged_out()
        return jsonify({
            'success': True,
            'message': 'Logged out successfully. Session cleared.'
        }), 200

    @app.route('/webhook', methods=['POST'])
    def webhook():
        """
        Recibe eventos del ciclo de vida desde el bridge.

        Request Body:
            {"event": "qr", "data": {"qr": "..."}}
        """
        if not config.webhook_token:
            raise InvalidWebhook("Webhook is disabled: WEBHOOK_TOKEN is not configured", 403)

        token = request.headers.get('X-Webhook-Token', '')
        if not hmac.compare_digest(token.encode(), config.webhook_token.encode()):
            raise InvalidWebhook("Invalid webhook token", 403)

        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise InvalidWebhook("Body must be a JSON object")

        event = data.get('event')
        if not isinstance(event, str) or event not in WEBHOOK_EVENTS:
            raise InvalidWebhook(f"Unknown event: {event}")

        payload = data.get('data') or {}
        if not isinstance(payload, dict):
            raise InvalidWebhook("Event data must be an object")

        # Un QR vacío borraría el QR pendiente
        if event == 'qr' and (not isinstance(payload.get('qr'), str) or not payload.get('qr')):
            raise InvalidWebhook("Missing QR payload")

        client.emit(event, *WEBHOOK_EVENTS[event](payload))
        return jsonify({
            'success': True,
            'event': event
        }), 200

    @app.route('/health', methods=['GET'])
    def health_check():
        """
        Endpoint de health check para monitoreo.

        Siempre responde 200, esté o no conectada la sesión de WhatsApp.
        """
        return jsonify({
            'status': 'healthy',
            'timestamp': utc_timestamp(),
            'whatsappReady': tracker.ready
        }), 200

    @app.errorhandler(GatewayError)
    def gateway_error(error):
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({
            'success': False,
            'error': 'Endpoint not found'
        }), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({
            'success': False,
            'error': 'Method not allowed'
        }), 405

    @app.errorhandler(Exception)
    def internal_error(error):
        """Captura errores no manejados y responde con JSON."""
        if isinstance(error, HTTPException):
            return jsonify({
                'success': False,
                'error': error.description
            }), error.code
        app.logger.exception(f"Unhandled error: {error}")
        return jsonify({
            'success': False,
            'error': 'Internal server error'
        }), 500

    return app


def start_client(app: Flask) -> None:
    """Arranca la sesión de WhatsApp; si el bridge no responde, la API sigue disponible."""
    client = app.extensions['whatsapp_client']
    try:
        client.initialize()
    except WhatsAppClientError as e:
        app.logger.error(f"Could not initialize WhatsApp client: {e}")


if __name__ == '__main__':
    config = GatewayConfig.from_env()
    app = create_app(config)
    start_client(app)

    print("\n" + "="*70)
    print(f"  WhatsApp Bot API server running on port {config.port}")
    print("="*70)
    print("  Available endpoints:")
    print("    GET  /status                    - Check bot status")
    print("    GET  /qr                        - Get QR code for authentication")
    print("    POST /send-message              - Send text message")
    print("    POST /send-media                - Send media message")
    print("    GET  /chat-info/<phoneNumber>   - Get chat information")
    print("    POST /logout                    - Logout and clear session")
    print("    POST /webhook                   - Lifecycle events from the bridge")
    print("    GET  /health                    - Health check")
    print("="*70 + "\n")

    app.run(host='0.0.0.0', port=config.port, debug=config.debug, use_reloader=False)
