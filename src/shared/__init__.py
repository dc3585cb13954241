# src/shared/__init__.py
"""
Code shared by the order and delivery services.

Modules:
- models: DTOs and enums (PropagationOutcome included)
- errors: domain error taxonomy and its HTTP mapping
- auth: request-scoped caller identity
"""

__all__: list[str] = []
