"""
API Routers for Hookline

- webhooks: webhook registration, testing, delivery history and secret rotation
"""
