"""
WhatsApp services: transport client, conversation lifecycle, status tracking,
webhook ingestion and the AI agent.
"""
