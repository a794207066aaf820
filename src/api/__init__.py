"""
Hookline API - webhook management endpoints

Exposes the tenant-facing REST interface for registering webhooks,
sending test deliveries and inspecting delivery history.
"""
