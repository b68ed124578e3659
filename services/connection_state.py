"""
Seguimiento del estado de conexión de WhatsApp.

El tracker refleja en dos campos (ready y qr_payload) los eventos del
ciclo de vida que emite el cliente. Es el único que escribe ese estado;
los endpoints HTTP solo leen instantáneas inmutables.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionState:
    """Instantánea del estado de conexión."""

    ready: bool = False
    qr_payload: Optional[str] = None


class ConnectionTracker:
    """
    Mantiene el ConnectionState a partir de los eventos del cliente.

    Las escrituras se hacen bajo un lock (Flask atiende peticiones en
    varios hilos y los eventos llegan por el webhook). Tras una
    desconexión se programa una reinicialización del cliente; si llega
    otra desconexión antes de que se ejecute, el temporizador pendiente se
    cancela y se programa uno nuevo, así nunca hay más de una
    reinicialización en espera.
    """

    def __init__(self, client, reconnect_delay: float = 5.0,
                 timer_factory: Callable[..., threading.Timer] = threading.Timer):
        """
        Args:
            client: Cliente de WhatsApp (debe exponer on() e initialize())
            reconnect_delay: Segundos de espera antes de reinicializar
            timer_factory: Constructor del temporizador (inyectable en pruebas)
        """
        self.client = client
        self.reconnect_delay = reconnect_delay
        self._timer_factory = timer_factory
        self._state = ConnectionState()
        self._lock = threading.Lock()
        self._reconnect_timer: Optional[threading.Timer] = None
        self._generation = 0

    def snapshot(self) -> ConnectionState:
        with self._lock:
            return self._state

    @property
    def ready(self) -> bool:
        return self.snapshot().ready

    def subscribe(self) -> None:
        """Registra los manejadores del tracker en el cliente."""
        self.client.on('qr', self.on_qr)
        self.client.on('ready', self.on_ready)
        self.client.on('authenticated', self.on_authenticated)
        self.client.on('auth_failure', self.on_auth_failure)
        self.client.on('disconnected', self.on_disconnected)
        self.client.on('loading_screen', self.on_loading_screen)
        self.client.on('change_state', self.on_change_state)

    def _update(self, **changes) -> None:
        with self._lock:
            self._state = ConnectionState(
                ready=changes.get('ready', self._state.ready),
                qr_payload=changes.get('qr_payload', self._state.qr_payload)
            )

    # ------------------------------------------------------------------
    # Manejadores de eventos
    # ------------------------------------------------------------------

    def on_qr(self, payload: str) -> None:
        logger.info("QR code received, please scan with your WhatsApp mobile app")
        self._update(qr_payload=payload)

    def on_ready(self) -> None:
        logger.info("WhatsApp client is ready")
        self._update(ready=True, qr_payload=None)

    def on_authenticated(self) -> None:
        logger.info("WhatsApp client authenticated successfully")

    def on_auth_failure(self, reason: Optional[str] = None) -> None:
        logger.error(f"Authentication failed: {reason}")
        self._update(ready=False)

    def on_loading_screen(self, percent=None, message: Optional[str] = None) -> None:
        logger.info(f"Loading: {percent}% {message or ''}".rstrip())

    def on_change_state(self, state: Optional[str] = None) -> None:
        logger.info(f"Connection state changed: {state}")

    def on_disconnected(self, reason: Optional[str] = None) -> None:
        logger.warning(f"WhatsApp client disconnected: {reason}")
        self._update(ready=False)
        self.schedule_reconnect()

    def mark_logged_out(self) -> None:
        """Refleja un cierre de sesión solicitado desde la API."""
        self._update(ready=False, qr_payload=None)

    # ------------------------------------------------------------------
    # Reconexión
    # ------------------------------------------------------------------

    def schedule_reconnect(self) -> None:
        """Programa la reinicialización, reemplazando la que esté pendiente."""
        with self._lock:
            if self._reconnect_timer is not None:
                self._reconnect_timer.cancel()
                logger.info("Replacing pending reconnect with a new one")
            self._generation += 1
            timer = self._timer_factory(self.reconnect_delay, self._reconnect, args=(self._generation,))
            timer.daemon = True
            self._reconnect_timer = timer
        logger.info(f"Attempting to reconnect in {self.reconnect_delay:g} seconds...")
        timer.start()

    def _reconnect(self, generation: int) -> None:
        with self._lock:
            # Un temporizador reemplazado que ya había disparado no hace nada
            if generation != self._generation:
                return
            self._reconnect_timer = None
        try:
            self.client.initialize()
        except Exception as e:
            # Sin más reintentos: se requiere reiniciar el proceso
            logger.error(f"Reconnect failed: {e}")

    @property
    def reconnect_pending(self) -> bool:
        with self._lock:
            return self._reconnect_timer is not None

    def shutdown(self) -> None:
        """Cancela la reconexión pendiente, si la hay."""
        with self._lock:
            self._generation += 1
            if self._reconnect_timer is not None:
                self._reconnect_timer.cancel()
                self._reconnect_timer = None
