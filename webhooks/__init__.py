"""
webhooks — inbound channel-manager events.

Signed Channex events are verified, recorded once per event id, and routed
by ``event_type`` to the reservation / inventory handlers.
"""
