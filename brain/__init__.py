"""
brain/__init__.py — Parley Agent Service Access

    types           AgentRequest, reply-shape union, GatewayResult
    agent_client    HTTP transport to the hosted agent service
    agent_gateway   Session lookup + prompt rewrite + fallback replies
"""
