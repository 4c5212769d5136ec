# condoportal/events.py
"""
Bus de eventos en proceso.

`status_events` recibe los cambios de estado Activo/Moroso calculados por la
rutina de morosidad. `payment_events` recibe cada pago insertado y alimenta
la campana de notificaciones de los administradores.
"""
import logging
import threading

logger = logging.getLogger(__name__)


class EventBus:
    def __init__(self, name):
        self.name = name
        self._subscribers = []
        self._lock = threading.Lock()

    def subscribe(self, callback):
        """
        Registra un callback. Registrar dos veces el mismo callback no lo duplica.

        Returns:
            callable: función sin argumentos que cancela la suscripción
        """
        with self._lock:
            if callback not in self._subscribers:
                self._subscribers.append(callback)
        return lambda: self.unsubscribe(callback)

    def unsubscribe(self, callback):
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def publish(self, payload):
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(payload)
            except Exception as e:
                # Un suscriptor roto no debe afectar al que publica
                logger.error(f"Error en suscriptor de '{self.name}': {e}", exc_info=True)

    def __len__(self):
        return len(self._subscribers)


status_events = EventBus('status_events')
payment_events = EventBus('payment_events')
