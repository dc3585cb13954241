# src/services/delivery_service/__init__.py
"""
Delivery Service.
Owns deliveries and keeps the order service in step with them.
"""
