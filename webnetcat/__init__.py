"""
webnetcat - Browser-reachable TCP relay

Lets a browser talk to arbitrary TCP services over a WebSocket.

Architecture:
- Each module is self-contained with clear interfaces
- Modules are completely replaceable
- No module knows the internals of another
- All communication through defined interfaces

Modules:
- config: Process configuration
- admission: Host/port admission policy
- registry: Active session bookkeeping and concurrency bound
- protocol: Wire message codec
- relay: Session state machine, byte pump, idle watchdog, dispatcher
"""

__version__ = "1.0.0"
