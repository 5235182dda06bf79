"""
SprintDesk
AI module — workshop collaborator.

Submodules:
    - workshop_gateway: OpenAI chat completions client (timeout, audit fields)
    - prompts: Workshop prompt templates and sprint context builder
"""
