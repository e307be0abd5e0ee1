"""
Integration tests for brokerkit.

These tests need a real RabbitMQ broker, started with testcontainers.
They are skipped automatically when testcontainers or Docker is not available.
"""
