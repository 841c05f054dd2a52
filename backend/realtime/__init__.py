"""
Realtime app for WebSocket communication.

This app provides:
- WebSocket consumers for drivers and passengers
- The matching engine's notifier, pushing offers and outcomes onto the
  channel layer
- JWT/Cookie authentication middleware for WebSocket connections

Key Components:
    - consumers/: WebSocket consumers (driver, passenger)
    - notifications.py: ChannelsDispatchNotifier and ride event helpers
    - middleware.py: token or session authentication for sockets

Usage:
    from realtime.consumers import DriverConsumer, PassengerConsumer
    from realtime.notifications import notify_driver_event, notify_passenger_event
"""
