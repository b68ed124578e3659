"""
Script de prueba manual contra un gateway en ejecución.

Recorre los endpoints con la librería requests y, opcionalmente, simula
los eventos que enviaría el bridge al webhook (qr, ready) para poder
probar sin una sesión real de WhatsApp Web.

Uso:
    python app.py            # en otra terminal
    python smoke_test.py [--simulate-bridge] [--send 0788123456 "Muraho"]
"""

import os
import sys
import json
import requests

# Configuración del servidor
BASE_URL = os.getenv("GATEWAY_URL", f"http://localhost:{os.getenv('PORT', 6000)}")
WEBHOOK_TOKEN = os.getenv("WEBHOOK_TOKEN", "")


def print_response(title, response):
    """
    Imprime la respuesta del servidor de forma legible.

    Args:
        title: Título de la prueba
        response: Objeto Response de requests
    """
    print("\n" + "="*70)
    print(f"  {title}")
    print("="*70)
    print(f"Status Code: {response.status_code}")
    print("Response:")
    print(json.dumps(response.json(), indent=2, ensure_ascii=False))
    print("="*70)


def check_health():
    response = requests.get(f"{BASE_URL}/health", timeout=10)
    print_response("Health Check", response)
    return response.status_code == 200


def check_status():
    response = requests.get(f"{BASE_URL}/status", timeout=10)
    print_response("Status", response)
    return response.json().get('status') == 'ready'


def check_qr():
    response = requests.get(f"{BASE_URL}/qr", timeout=10)
    print_response("QR", response)


def simulate_bridge_event(event, data=None):
    """Envía al webhook un evento como lo haría el bridge."""
    headers = {'X-Webhook-Token': WEBHOOK_TOKEN} if WEBHOOK_TOKEN else {}
    response = requests.post(
        f"{BASE_URL}/webhook",
        json={'event': event, 'data': data or {}},
        headers=headers,
        timeout=10
    )
    print_response(f"Webhook: {event}", response)
    return response.status_code == 200


def send_message(phone_number, message):
    """
    Envía un mensaje de prueba.

    Args:
        phone_number: Número de Ruanda en cualquier formato aceptado
        message: Texto del mensaje
    """
    response = requests.post(
        f"{BASE_URL}/send-message",
        json={'phoneNumber': phone_number, 'message': message},
        timeout=60
    )
    print_response("Send Message", response)
    return response.status_code == 200


def main(argv):
    if not check_health():
        print("\nEl gateway no está disponible")
        return 1

    if '--simulate-bridge' in argv:
        simulate_bridge_event('qr', {'qr': 'smoke-test-qr'})
        check_qr()
        simulate_bridge_event('ready')

    ready = check_status()
    check_qr()

    if '--send' in argv:
        idx = argv.index('--send')
        try:
            phone_number, message = argv[idx + 1], argv[idx + 2]
        except IndexError:
            print("\nUso: --send <phoneNumber> <message>")
            return 1
        if not ready:
            print("\nLa sesión no está lista; se espera un 503")
        send_message(phone_number, message)

    print("\nPruebas completadas\n")
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
