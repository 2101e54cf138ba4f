"""
agent/ — Parley Conversation Core

Component overview:
    classifier           Greeting / confirmation / follow-up heuristics
    ContextEnhancer      Rewrites short follow-ups with recent context
    ConversationView     Per-surface state: pending action + recent history
    ResponseSynthesizer  Formats outcomes for the CLI / gateway / HTTP API
    ConfirmationOrchestrator
                         submit → (confirm | cancel) workflow

Import from the submodules directly; this package keeps no eager imports
so safety/ and brain/ can depend on agent.classifier without cycles.
"""
