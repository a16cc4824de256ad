"""
Mindful Notifier - periodic reminder notifications with quiet hours

Keeps a rolling buffer of pre-registered reminder notifications alive on hosts
that can only fire notifications at fixed future instants.

Core modules:
- datetime_utils: Duration arithmetic and time-of-day binding
- quiet_hours: Recurring daily silence window
- scheduler: Periodic and random fire-time strategies
- buffer: Buffer replenishment, debounce lease and tripwire notification
- background: Headless periodic replenishment runner
- controller: Foreground entry points (enable, disable, reschedule)

Adapters:
- durable_store: JSON-file key/value state shared between contexts
- notifications: asyncio notification host with a persisted pending set
- mqtt: Delivery, buffer telemetry and remote commands over MQTT
"""

__version__ = "0.4.2"
