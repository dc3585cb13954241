# src/services/order_service/__init__.py
"""
Order Service.
Single source of truth for the order lifecycle.
"""
