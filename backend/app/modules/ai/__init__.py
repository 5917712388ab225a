"""
AI Module

Gemini-backed sentiment analysis and reply generation, the function calls a
reply may carry, and the sentiment history they produce.
"""
