"""Infrastructure modules for the rounds service.

Provides database models and sessions, and the async event fan-out used to
hand round notifications to delivery handlers.
"""
