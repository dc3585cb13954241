# src/services/__init__.py
"""
Application micro-services.

Architecture:
- each service is an independent FastAPI application
- one PostgreSQL database, one schema per service
- events over RabbitMQ, synchronous calls over HTTP

Services:
- order_service: order lifecycle (creation, status machine, cancellation)
- delivery_service: courier assignment, delivery progress, location
"""
