"""
Services package - Business logic layer.

Modules:
    - matching: Framework-free driver matching and offer dispatch engine
    - ride_management: Ride lifecycle operations on top of the engine and the
      Django models, shared by the HTTP and WebSocket layers

Nothing is re-exported here so that `services.matching` stays importable
without Django settings.
"""
