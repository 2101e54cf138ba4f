"""
gateway/ — Network Surfaces

    gateway_server   WebSocket control plane (stateful ask/confirm/cancel)
    http_api         Stateless POST /api/planner + static web UI
    protocol         WebSocket message envelope and factories
    session_store    user id → agent session handle registry
    validation       Shared prompt / history validation
"""
