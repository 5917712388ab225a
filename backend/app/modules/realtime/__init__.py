"""
Realtime Module

WebSocket fan-out of conversation events to dashboard clients.
"""
