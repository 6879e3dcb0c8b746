"""
COSMO Orchestrator.

Single entry point for chat messages, webhooks, scheduled system tasks and
agent actions: intent analysis, function selection and execution, model
routing and response assembly.
"""
